from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WalletSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CASHU_", env_file=".env", extra="ignore")

    data_dir: Path = Path.home() / ".cashuwallet"
    database_url: Optional[str] = None
    backend_module: str = "cdk_ffi"
    currency_unit: str = "sat"
    # Seconds between quote state checks while receiving
    poll_interval: float = Field(default=1.0, ge=0.5, le=2.0)
    invoice_prefixes: List[str] = ["lnbc"]
    default_memo: str = "Cashu wallet receive"
    hash_db_paths: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @field_validator("invoice_prefixes")
    @classmethod
    def lowercase_prefixes(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("at least one invoice prefix is required")
        return [prefix.lower() for prefix in value]

    @property
    def wallets_dir(self) -> Path:
        return self.data_dir / "wallets"

    @property
    def vault_path(self) -> Path:
        return self.data_dir / "seed.vault"

    @property
    def vault_key_path(self) -> Path:
        return self.data_dir / "seed.key"

    def get_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{self.data_dir / 'cashuwallet.sqlite3'}"
