import base64
import unittest

from pharmacy.encryption import (
    EncryptedField,
    EncryptedListField,
    EncryptionKey,
    FieldCipher,
    NONCE_SIZE,
    TAG_SIZE,
)
from pharmacy.errors import EncryptionError


SECRET = "unit-test-secret-0123456789abcde"  # 32 characters


class EncryptionKeyTests(unittest.TestCase):
    def test_secret_must_be_exactly_32_characters(self):
        with self.assertRaises(EncryptionError):
            EncryptionKey.from_secret("too-short")
        with self.assertRaises(EncryptionError):
            EncryptionKey.from_secret(SECRET + "x")
        with self.assertRaises(EncryptionError):
            EncryptionKey.from_secret(None)

    def test_same_secret_derives_same_key(self):
        self.assertEqual(len(SECRET), 32)
        a = EncryptionKey.from_secret(SECRET)
        b = EncryptionKey.from_secret(SECRET)
        self.assertEqual(a.material, b.material)
        self.assertEqual(len(a.material), 32)


class FieldCipherTests(unittest.TestCase):
    def setUp(self):
        self.cipher = FieldCipher(EncryptionKey.from_secret(SECRET))

    def test_round_trip(self):
        ciphertext = self.cipher.encrypt("123 Rizal Ave, Manila")
        self.assertNotIn("Rizal", ciphertext)
        self.assertEqual(self.cipher.decrypt(ciphertext), "123 Rizal Ave, Manila")

    def test_nonce_is_random_per_call(self):
        self.assertNotEqual(self.cipher.encrypt("same"), self.cipher.encrypt("same"))

    def test_stored_form_is_nonce_ciphertext_tag(self):
        raw = base64.b64decode(self.cipher.encrypt("abc"))
        self.assertEqual(len(raw), NONCE_SIZE + 3 + TAG_SIZE)

    def test_empty_string_maps_to_empty_string(self):
        self.assertEqual(self.cipher.encrypt(""), "")
        self.assertEqual(self.cipher.decrypt(""), "")

    def test_missing_key_never_falls_back_to_plaintext(self):
        cipher = FieldCipher(None)
        self.assertFalse(cipher.ready)
        with self.assertRaises(EncryptionError):
            cipher.encrypt("secret")
        with self.assertRaises(EncryptionError):
            cipher.decrypt("c2VjcmV0")

    def test_malformed_ciphertext(self):
        with self.assertRaises(EncryptionError):
            self.cipher.decrypt("not base64 !!")
        with self.assertRaises(EncryptionError):
            self.cipher.decrypt(base64.b64encode(b"short").decode())

    def test_tampered_ciphertext_fails_authentication(self):
        raw = bytearray(base64.b64decode(self.cipher.encrypt("allergic to penicillin")))
        raw[-1] ^= 0x01
        with self.assertRaises(EncryptionError):
            self.cipher.decrypt(base64.b64encode(bytes(raw)).decode())

    def test_other_key_cannot_decrypt(self):
        other = FieldCipher(EncryptionKey.from_secret("another-secret-0123456789abcdefg"))
        with self.assertRaises(EncryptionError):
            other.decrypt(self.cipher.encrypt("value"))


class EncryptedFieldTests(unittest.TestCase):
    def setUp(self):
        self.cipher = FieldCipher(EncryptionKey.from_secret(SECRET))

    def test_absent_and_empty_are_distinct(self):
        absent = EncryptedField(self.cipher).set(None)
        empty = EncryptedField(self.cipher).set("")
        self.assertIsNone(absent.to_column())
        self.assertFalse(absent.is_set)
        self.assertEqual(empty.to_column(), "")
        self.assertTrue(empty.is_set)

    def test_set_none_clears_a_populated_field(self):
        field = EncryptedField(self.cipher).set("Unit 4")
        field.set(None)
        self.assertFalse(field.is_set)
        self.assertIsNone(field.get())
        self.assertIsNone(field.to_column())
        self.assertIsNone(field.to_json())

    def test_plaintext_field_encrypts_lazily(self):
        field = EncryptedField(self.cipher, "B+")
        stored = field.to_column()
        self.assertEqual(self.cipher.decrypt(stored), "B+")
        self.assertEqual(field.to_column(), stored)

    def test_column_field_decrypts_on_first_get(self):
        stored = self.cipher.encrypt("hypertension")
        field = EncryptedField.from_column(self.cipher, stored)
        self.assertEqual(field.get(), "hypertension")
        self.assertEqual(field.to_json(), "hypertension")
        self.assertEqual(field.to_column(), stored)

    def test_null_column_reads_as_none(self):
        self.assertIsNone(EncryptedField.from_column(self.cipher, None).get())

    def test_from_json(self):
        field = EncryptedField.from_json(self.cipher, "note")
        self.assertEqual(self.cipher.decrypt(field.to_column()), "note")

    def test_bad_column_raises_on_get(self):
        field = EncryptedField.from_column(self.cipher, "garbage")
        with self.assertRaises(EncryptionError):
            field.get()


class EncryptedListFieldTests(unittest.TestCase):
    def setUp(self):
        self.cipher = FieldCipher(EncryptionKey.from_secret(SECRET))

    def test_round_trip(self):
        stored = EncryptedListField(self.cipher).set(["rx-1.png", "rx-2.png"]).to_column()
        self.assertEqual(EncryptedListField.from_column(self.cipher, stored).get(), ["rx-1.png", "rx-2.png"])

    def test_empty_list_is_empty_ciphertext(self):
        field = EncryptedListField(self.cipher).set([])
        self.assertEqual(field.to_column(), "")
        self.assertEqual(EncryptedListField.from_column(self.cipher, "").get(), [])
        self.assertEqual(EncryptedListField.from_column(self.cipher, None).get(), [])

    def test_rejects_non_string_items(self):
        with self.assertRaises(EncryptionError):
            EncryptedListField(self.cipher).set(["ok", 3])

    def test_non_list_plaintext_is_rejected(self):
        stored = self.cipher.encrypt('{"not": "a list"}')
        with self.assertRaises(EncryptionError):
            EncryptedListField.from_column(self.cipher, stored).get()


if __name__ == "__main__":
    unittest.main()
