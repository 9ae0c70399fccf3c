# sealmail_core/constants.py

SCHEMA_VERSION = "1.0"

# Sealed container
SEAL_ALGORITHM = "X25519-HKDF-SHA256+A256KW/A256GCM"
HKDF_INFO = b"sealmail-v1-content-key-wrap"
CONTENT_KEY_LEN = 32
NONCE_LEN = 12

# Armor
ARMOR_HEADER = "-----BEGIN SEALMAIL MESSAGE-----"
ARMOR_FOOTER = "-----END SEALMAIL MESSAGE-----"
ARMOR_WIDTH = 64

# Fingerprints
FINGERPRINT_LEN = 32   # hex chars
KEY_ID_LEN = 16        # hex chars, tail of the fingerprint

# List-view placeholders for encrypted messages
ENCRYPTED_SUBJECT_PLACEHOLDER = "\U0001F512 Encrypted"
ENCRYPTED_BODY_PLACEHOLDER = "Encrypted content"
PREVIEW_LEN = 120

# Defaults
DEFAULT_DB_PATH = "db/sealmail.db"
DEFAULT_LOOKUP_TIMEOUT = 2.0
DEFAULT_KEYGEN_TIMEOUT = 30.0
DEFAULT_KEYGEN_WORKERS = 4
