from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    app_title: str = 'Field Sales Portal'
    log_level: str = 'INFO'

    backend_provider: str = 'supabase'
    backend_url: str = 'http://localhost:54321'
    backend_anon_key: str | None = None
    backend_timeout_seconds: int = 10

    demo_mode_enabled: bool = True
    demo_email_domain: str = 'test.com'
    demo_password: str = 'demo'

    session_cookie_name: str = 'fieldsales_session'
    session_ttl_minutes: int = 60 * 12
    session_cookie_secure: bool = False
    session_cookie_samesite: str = 'lax'

    display_timezone: str = 'UTC'
    default_minimum_stock_level: int = 5
    history_limit: int = 50
    high_revenue_alert_threshold: int = 100000

    @property
    def backend_url_normalized(self) -> str:
        url = self.backend_url.strip().rstrip('/')
        if url.endswith('/rest/v1'):
            return url[: -len('/rest/v1')]
        return url


settings = Settings()
