from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'College Attendance'
    app_env: str = 'local'
    app_timezone: str = 'Asia/Kolkata'
    database_url: str = 'sqlite:///./attendance.db'
    db_slow_query_ms: int = 100
    db_query_timeout_ms: int = 30000
    metrics_slow_ms: int = 200
    institution_name: str = 'School Administration'
    default_country_code: str = '91'
    enable_whatsapp_notifications: bool = True
    twilio_account_sid: str = ''
    twilio_auth_token: str = ''
    twilio_whatsapp_number: str = ''
    twilio_api_base: str = 'https://api.twilio.com'
    twilio_timeout_seconds: float = 10.0
    notification_batch_size: int = 5
    notification_batch_delay_seconds: float = 1.0
    students_list_max_limit: int = 10000


settings = Settings()
