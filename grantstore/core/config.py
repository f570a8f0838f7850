"""Configuración central del almacén operacional (Pydantic Settings).

- Carga variables desde .env en la raíz del repositorio.
- Agrupa ajustes por área: App, Mongo, Colecciones, Limpieza de tokens, Logging.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, Field
from pathlib import Path

# Resuelve el .env ubicado en la raíz del repo (independiente del CWD)
ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


class Settings(BaseSettings):
    """Conjunto de variables de configuración con valores por defecto razonables.

    Nota: los valores pueden sobreescribirse vía variables de entorno (.env).
    """
    # App
    app_name: str = "Grant Store (operacional)"
    api_prefix: str = ""
    log_level: str = Field(
        "INFO",
        validation_alias=AliasChoices("GRANTSTORE_LOG_LEVEL", "LOG_LEVEL"),
    )

    # Mongo
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "identity_operational"
    mongo_server_selection_timeout_ms: int = 15000
    # TLS (en SRV siempre va activo)
    mongo_tls: bool = False
    mongo_tls_insecure: bool = False  # allows invalid certs (dev only)
    mongo_tls_allow_invalid_hostnames: bool = False

    # Colecciones
    persisted_grants_collection: str = "PersistedGrants"
    device_codes_collection: str = "DeviceCodes"

    # Limpieza periódica de grants y device codes vencidos
    enable_token_cleanup: bool = Field(
        False,
        validation_alias=AliasChoices("GRANTSTORE_ENABLE_TOKEN_CLEANUP", "ENABLE_TOKEN_CLEANUP"),
    )
    token_cleanup_interval: int = Field(
        3600,
        ge=1,
        validation_alias=AliasChoices("GRANTSTORE_TOKEN_CLEANUP_INTERVAL", "TOKEN_CLEANUP_INTERVAL"),
        description="Segundos entre barridos",
    )
    token_cleanup_notification_timeout: float = Field(
        30.0,
        gt=0,
        validation_alias=AliasChoices(
            "GRANTSTORE_TOKEN_CLEANUP_NOTIFICATION_TIMEOUT", "TOKEN_CLEANUP_NOTIFICATION_TIMEOUT"
        ),
        description="Tiempo máximo (s) para cada notificación al observador",
    )

    # --- Utilidades derivadas / helpers ---
    @property
    def api_prefix_normalized(self) -> str:
        """Devuelve `api_prefix` con formato consistente.

        - Siempre inicia con '/'
        - Sin '/' final (excepto cuando es solo '/')
        - Si está vacío, devuelve ""
        """
        pref = (self.api_prefix or "").strip()
        if not pref:
            return ""
        if not pref.startswith('/'):
            pref = '/' + pref
        if len(pref) > 1 and pref.endswith('/'):
            pref = pref[:-1]
        return pref

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # no fallar si hay variables no usadas
        populate_by_name=True,
    )


settings = Settings()
