from core.settings import *  # noqa: F401,F403

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': str(BASE_DIR / 'test-gasless.sqlite3'),  # noqa: F405
        'TEST': {'NAME': str(BASE_DIR / 'test-gasless.sqlite3')},  # noqa: F405
        # File-backed so threads in TransactionTestCase share one database.
        'OPTIONS': {'transaction_mode': 'IMMEDIATE', 'timeout': 30},
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

GASLESS_NETWORK = 'solana-devnet'
GASLESS_RPC_URL = 'http://localhost:8899'
GASLESS_RECIPIENT_WALLET = '9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM'
GASLESS_PRICE = Decimal('0.0003')  # noqa: F405
GASLESS_TOKEN_MINT = ''
GASLESS_TOKEN_DECIMALS = 6
GASLESS_FEE_PAYER_PRIVATE_KEY = ''
GASLESS_VERIFY_INITIAL_DELAY_SECONDS = 0
GASLESS_VERIFY_MAX_ATTEMPTS = 2
GASLESS_VERIFY_RETRY_DELAY_SECONDS = 0
GASLESS_ALLOW_PERMISSIVE_FALLBACK = False
GASLESS_REFUND_ON_SUBMISSION_FAILURE = False
