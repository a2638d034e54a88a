from decimal import Decimal

from environs import Env
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

env = Env()
env.read_env(BASE_DIR / '.env')

APP_ENV = env.str('APP_ENV', 'local')

SECRET_KEY = env.str('APP_SECRET_KEY', 'change-me')

DEBUG = APP_ENV != 'production'

ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['*'])

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'gasless',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'core.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'core.wsgi.application'


DATABASES = {
    'default': {
        'ENGINE': env.str('DATABASE_ENGINE', 'django.db.backends.postgresql'),
        'NAME': env.str(
            'PGSQL_DATABASE_GASLESS',
            env.str('PGSQL_DATABASE', 'gasless_credit'),
        ),
        'USER': env.str('PGSQL_USER', 'postgres'),
        'PASSWORD': env.str('PGSQL_PASSWORD', 'mysecretpassword'),
        'HOST': env.str('PGSQL_HOST', 'localhost'),
        'PORT': env.int('PGSQL_PORT', 5432),
    }
}

if DATABASES['default']['ENGINE'].endswith('sqlite3'):
    DATABASES['default']['NAME'] = env.str('SQLITE_PATH', str(BASE_DIR / 'db.sqlite3'))
    # Writers take the lock on BEGIN so concurrent credit deductions queue up.
    DATABASES['default']['OPTIONS'] = {'transaction_mode': 'IMMEDIATE', 'timeout': 30}


AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]


LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True


STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'static'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
}

# Gasless credit
GASLESS_NETWORK = env.str('GASLESS_NETWORK', 'solana')
GASLESS_RPC_URL = env.str('GASLESS_RPC_URL', '')
GASLESS_RECIPIENT_WALLET = env.str('GASLESS_RECIPIENT_WALLET', '')
GASLESS_PRICE = env.decimal('GASLESS_PRICE', Decimal('0.0003'))
GASLESS_TOKEN_MINT = env.str('GASLESS_TOKEN_MINT', '')
GASLESS_TOKEN_DECIMALS = env.int('GASLESS_TOKEN_DECIMALS', 6)
GASLESS_FEE_PAYER_PRIVATE_KEY = env.str('GASLESS_FEE_PAYER_PRIVATE_KEY', '')
GASLESS_VERIFY_INITIAL_DELAY_SECONDS = env.float('GASLESS_VERIFY_INITIAL_DELAY_SECONDS', 5)
GASLESS_VERIFY_MAX_ATTEMPTS = env.int('GASLESS_VERIFY_MAX_ATTEMPTS', 5)
GASLESS_VERIFY_RETRY_DELAY_SECONDS = env.float('GASLESS_VERIFY_RETRY_DELAY_SECONDS', 3)
GASLESS_ALLOW_PERMISSIVE_FALLBACK = env.bool('GASLESS_ALLOW_PERMISSIVE_FALLBACK', False)
GASLESS_REFUND_ON_SUBMISSION_FAILURE = env.bool('GASLESS_REFUND_ON_SUBMISSION_FAILURE', False)
GASLESS_PAYMENT_HISTORY_LIMIT = env.int('GASLESS_PAYMENT_HISTORY_LIMIT', 50)
