# =================================================================
#   CollegeConnect Attendance - Application Configuration
#   Loads settings from environment variables (.env file)
# =================================================================

import os
import secrets
from dotenv import load_dotenv

# Load .env file from the same directory as this file
load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), '.env'))


def _get_or_generate_secret_key():
    """
    Gets SECRET_KEY from environment, or auto-generates one on first run.
    If auto-generated, writes it back to the .env file so it persists.
    """
    key = os.environ.get('SECRET_KEY', '')

    if not key or key == 'auto_generate_on_first_run':
        key = secrets.token_hex(32)

        env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), '.env')
        try:
            if os.path.exists(env_path):
                with open(env_path, 'r') as f:
                    content = f.read()
                if 'SECRET_KEY=' in content:
                    content = content.replace('SECRET_KEY=auto_generate_on_first_run', f'SECRET_KEY={key}')
                else:
                    content = content.rstrip('\n') + f'\nSECRET_KEY={key}\n'
                with open(env_path, 'w') as f:
                    f.write(content)
                print("[CONFIG] Auto-generated SECRET_KEY and saved to .env")
            else:
                with open(env_path, 'w') as f:
                    f.write(f'SECRET_KEY={key}\n')
                print("[CONFIG] Created .env with auto-generated SECRET_KEY")
        except OSError as e:
            print(f"[CONFIG] Warning: Could not save SECRET_KEY to .env: {e}")
            print("[CONFIG] The key will be regenerated on next restart!")

    return key


def _env_flag(name, default):
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes', 'on')


# =================================================================
#   Configuration Classes
# =================================================================

class BaseConfig:
    """Base configuration shared by all environments."""

    # Security
    SECRET_KEY = _get_or_generate_secret_key()

    # Database
    DATABASE_PATH = os.environ.get('DATABASE_PATH', 'collegeconnect.db')

    # Server
    HOST = os.environ.get('HOST', '0.0.0.0')
    PORT = int(os.environ.get('PORT', 8080))
    CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGIN', '*').split(',') if o.strip()]

    # Rate Limiting
    RATE_LIMIT_API = os.environ.get('RATE_LIMIT_API', "200 per minute")

    # ===== IDENTITY =====
    # Demo mode accepts an opaque bearer value plus an X-User-Email header
    # when the token is not a signed JWT.
    AUTH_DEMO_MODE = _env_flag('AUTH_DEMO_MODE', 'true')
    # Falls back to the staff*/admin* email prefix when the token has no role claim
    INFER_ROLE_FROM_EMAIL = _env_flag('INFER_ROLE_FROM_EMAIL', 'true')

    # ===== INSTITUTE CONVENTIONS =====
    ROLL_NUMBER_PREFIX = os.environ.get('ROLL_NUMBER_PREFIX', '21BCS')
    STUDENT_EMAIL_DOMAIN = os.environ.get('STUDENT_EMAIL_DOMAIN', 'college.edu')

    # ===== ATTENDANCE =====
    MINIMUM_ATTENDANCE_PERCENTAGE = 75   # Institute minimum requirement (%)
    ATTENDANCE_WARNING_THRESHOLD = 60    # Critical warning threshold (%)
    ABSENCE_PROBABILITY = float(os.environ.get('ABSENCE_PROBABILITY', '0.15'))

    # Admin overview paging
    OVERVIEW_DEFAULT_LIMIT = 200
    OVERVIEW_MAX_LIMIT = 500

    # --- Weekly timetable generation ---
    ENABLE_WEEKLY_GENERATION = _env_flag('ENABLE_WEEKLY_GENERATION', 'false')
    WEEKLY_GENERATION_DAY = os.environ.get('WEEKLY_GENERATION_DAY', 'mon')
    WEEKLY_GENERATION_HOUR = int(os.environ.get('WEEKLY_GENERATION_HOUR', '6'))


class DevelopmentConfig(BaseConfig):
    """Development environment configuration."""
    DEBUG = True
    TESTING = False


class ProductionConfig(BaseConfig):
    """Production environment configuration."""
    DEBUG = False
    TESTING = False
    AUTH_DEMO_MODE = _env_flag('AUTH_DEMO_MODE', 'false')


class TestingConfig(BaseConfig):
    """Testing environment configuration."""
    DEBUG = True
    TESTING = True
    DATABASE_PATH = os.environ.get('DATABASE_PATH', 'collegeconnect_test.db')
    RATE_LIMIT_API = "10000 per minute"
    AUTH_DEMO_MODE = True
    ENABLE_WEEKLY_GENERATION = False


# --- Select configuration based on FLASK_ENV ---
_env = os.environ.get('FLASK_ENV', 'development').lower()
_config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}

Config = _config_map.get(_env, DevelopmentConfig)
