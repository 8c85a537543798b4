from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database
    database_url: str = "sqlite:///./tokenmarket.db"

    # Blockchain (gateway is disabled unless all four are set)
    chain_rpc_url: str | None = None
    chain_sender_private_key: str | None = None
    tokenized_goods_address: str | None = None
    marketplace_address: str | None = None
    chain_rpc_timeout_seconds: int = 10
    chain_receipt_timeout_seconds: int = 120
    chain_gas_price_gwei: int = 1
    # first block scanned when looking for unreported Purchase events
    chain_start_block: int = 0

    # Redis event forwarding (optional)
    redis_url: str | None = None

    # Uploads
    upload_dir: str = "uploads"
    upload_url_prefix: str = "/uploads"
    max_upload_bytes: int = 5 * 1024 * 1024

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    cors_origins: list[str] = ["*"]

    @property
    def chain_configured(self) -> bool:
        return all(
            (
                self.chain_rpc_url,
                self.chain_sender_private_key,
                self.tokenized_goods_address,
                self.marketplace_address,
            )
        )


settings = Settings()
