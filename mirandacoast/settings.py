"""
Configurações para o projeto Miranda Coast (checkout e expedição).
"""

import os
from datetime import timedelta
from decouple import config, Csv
from pathlib import Path

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent


# ====================================================================
# CONFIGURAÇÕES BÁSICAS
# ====================================================================

# A SECRET_KEY deve ser lida de uma variável de ambiente por segurança.
SECRET_KEY = config('SECRET_KEY', default='django-insecure-default-key-for-development')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = config('DEBUG', default=False, cast=bool)

ALLOWED_HOSTS = config('ALLOWED_HOSTS', default='localhost,127.0.0.1,testserver', cast=Csv())

CSRF_TRUSTED_ORIGINS = config('CSRF_TRUSTED_ORIGINS', default='', cast=Csv())


# ====================================================================
# APLICAÇÕES INSTALADAS
# ====================================================================

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Aplicações de Terceiros (Primeiro)
    'rest_framework',
    'drf_spectacular',
    'rest_framework_simplejwt',

    # Nossas Aplicações (Nessa ordem para referências de Models)
    'mirandacoast.core.apps.CoreConfig', # Entidades, Casos de Uso e comandos
    'mirandacoast.infrastructure.apps.InfrastructureConfig', # Models, Repositório e Gateways
    'mirandacoast.presentation.apps.PresentationConfig', # API REST e Admin
]


# ====================================================================
# MIDDLEWARE
# ====================================================================

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'mirandacoast.urls'

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

WSGI_APPLICATION = 'mirandacoast.wsgi.application'


# ====================================================================
# CONFIGURAÇÃO DO BANCO DE DADOS
# ====================================================================

# SQLite em desenvolvimento; PostgreSQL quando DB_ENGINE for definido.
DB_ENGINE = config('DB_ENGINE', default='django.db.backends.sqlite3')

if DB_ENGINE == 'django.db.backends.sqlite3':
    DATABASES = {
        'default': {
            'ENGINE': DB_ENGINE,
            'NAME': config('DB_NAME', default=str(BASE_DIR / 'db.sqlite3')),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': DB_ENGINE,
            'NAME': config('DB_NAME', default='mirandacoast'),
            'USER': config('DB_USER', default='postgres'),
            'PASSWORD': config('DB_PASSWORD', default=''),
            'HOST': config('DB_HOST', default='localhost'),
            'PORT': config('DB_PORT', default='5432'),
        }
    }


# ====================================================================
# AUTENTICAÇÃO E VALIDAÇÃO DE SENHA
# ====================================================================

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


# ====================================================================
# INTERNACIONALIZAÇÃO
# ====================================================================

LANGUAGE_CODE = 'pt-br'

TIME_ZONE = 'America/Sao_Paulo'

USE_I18N = True

USE_TZ = True


# ====================================================================
# ARQUIVOS ESTÁTICOS
# ====================================================================

STATIC_URL = '/static/'
STATIC_ROOT = os.path.join(BASE_DIR, 'staticfiles')

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# ====================================================================
# CONFIGURAÇÕES DO DJANGO REST FRAMEWORK (DRF), JWT E DOCS (SPECTACULAR)
# ====================================================================

SPECTACULAR_SETTINGS = {
    'TITLE': 'API da Miranda Coast',
    'DESCRIPTION': 'Checkout, pagamentos (Mercado Pago) e etiquetas de envio (Melhor Envio).',
    'VERSION': '1.0.0',
    'SERVE_INCLUDE_SCHEMA': False,
}

REST_FRAMEWORK = {
    # JWT é a autenticação primária para API, SessionAuth para o Admin e o checkout no navegador.
    'DEFAULT_AUTHENTICATION_CLASSES': (
        'rest_framework_simplejwt.authentication.JWTAuthentication',
        'rest_framework.authentication.SessionAuthentication',
    ),
    'DEFAULT_PERMISSION_CLASSES': (
        'rest_framework.permissions.IsAuthenticated',
    ),
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
}

SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(minutes=config('JWT_ACCESS_MINUTES', default=60, cast=int)),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=config('JWT_REFRESH_DAYS', default=7, cast=int)),
}


# ====================================================================
# CONFIGURAÇÕES DE SERVIÇOS EXTERNOS (Mercado Pago e Melhor Envio)
# ====================================================================

PUBLIC_SITE_URL = config('PUBLIC_SITE_URL', default='')
API_TIMEOUT = config('API_TIMEOUT', default=15, cast=int)

# Mercado Pago
MERCADO_PAGO_ACCESS_TOKEN = config('MERCADO_PAGO_ACCESS_TOKEN', default='')
MERCADO_PAGO_API_URL = config('MERCADO_PAGO_API_URL', default='https://api.mercadopago.com')
MERCADO_PAGO_WEBHOOK_URL = config('MERCADO_PAGO_WEBHOOK_URL', default='')
MERCADO_PAGO_STATEMENT_DESCRIPTOR = config('MERCADO_PAGO_STATEMENT_DESCRIPTOR', default='MIRANDA COAST')

# Melhor Envio
MELHOR_ENVIO_API_TOKEN = config('MELHOR_ENVIO_API_TOKEN', default='')
MELHOR_ENVIO_API_URL = config('MELHOR_ENVIO_API_URL', default='https://www.melhorenvio.com.br/api/v2')
MELHOR_ENVIO_USER_AGENT = config('MELHOR_ENVIO_USER_AGENT', default='Miranda Coast (contato@mirandacoast.com.br)')

# Loja (origem do envio e retirada)
LOJA_NOME = config('LOJA_NOME', default='Miranda Coast')
LOJA_CEP_ORIGEM = config('LOJA_CEP_ORIGEM', default='88348225')
LOJA_ENDERECO_RETIRADA = config('LOJA_ENDERECO_RETIRADA', default='')

LOJA_REMETENTE = {
    'name': config('SENDER_NAME', default='Miranda Coast'),
    'phone': config('SENDER_PHONE', default=''),
    'email': config('SENDER_EMAIL', default=''),
    'document': config('SENDER_DOCUMENT', default=''),
    'company_document': config('SENDER_COMPANY_DOCUMENT', default=''),
    'state_register': config('SENDER_STATE_REGISTER', default=''),
    'economic_activity_code': config('SENDER_ECONOMIC_ACTIVITY_CODE', default=''),
    'address': config('SENDER_ADDRESS', default=''),
    'number': config('SENDER_NUMBER', default=''),
    'complement': config('SENDER_COMPLEMENT', default=''),
    'district': config('SENDER_DISTRICT', default=''),
    'city': config('SENDER_CITY', default=''),
    'state_abbr': config('SENDER_STATE', default=''),
    'postal_code': config('SENDER_POSTAL_CODE', default=LOJA_CEP_ORIGEM),
    'country': config('SENDER_COUNTRY', default='BR'),
}


# ====================================================================
# LOGGING
# ====================================================================

LOG_DIR = BASE_DIR / 'logs'
os.makedirs(LOG_DIR, exist_ok=True)

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
        'file': {
            'level': config('LOG_LEVEL', default='WARNING'),
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': config('LOG_FILE', default=str(LOG_DIR / 'django.log')),
            'maxBytes': 1024 * 1024 * 5,  # 5 MB
            'backupCount': 5,
            'formatter': 'verbose',
        },
    },
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {process:d} {thread:d} {message}',
            'style': '{',
        },
    },
    'loggers': {
        'django': {
            'handlers': ['file'],
            'level': 'WARNING',
            'propagate': True,
        },
        'mirandacoast': {
            'handlers': ['console', 'file'],
            'level': config('LOG_LEVEL', default='INFO'),
            'propagate': False,
        },
    },
}
