"""
Paylink configuration.
All secrets/tunables come from environment variables.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # --- App ---
    app_name: str = "paylink"
    environment: str = "development"
    debug: bool = False
    port: int = 4000
    app_namespace: str = "sejamais2"  # prefix for link names + order codes

    # --- Local state (JSON files, fully rewritten on every update) ---
    data_dir: str = "data"
    link_mapping_file: str = "paymentlinks.json"
    webhook_log_file: str = "webhooks.json"
    conversion_log_file: str = "conversions.json"
    webhook_log_limit: int = 200
    conversion_log_limit: int = 1000

    # --- Payment provider (Pagar.me) ---
    pagarme_api_key: str = ""
    pagarme_api_base: str = "https://api.pagar.me/core/v5"
    payment_link_base_url: str = "https://payment-link-v3.pagar.me"
    shipping_carrier: str = ""

    # Operator pre-provisioned links: bare pl_* id or full URL
    paymentlink_experience: str = ""
    paymentlink_last_option: str = ""
    paymentlink_transformation: str = ""

    # --- Webhooks ---
    webhook_secret: str = ""  # empty = signature check skipped (dev only)

    # --- Ad attribution (Meta Conversions API) ---
    meta_pixel_id: str = ""
    meta_access_token: str = ""
    meta_api_base: str = "https://graph.facebook.com"
    meta_api_version: str = "v19.0"
    meta_test_event_code: str = ""
    currency: str = "BRL"
    conversion_event_names: list[str] = ["checkout.closed", "order.paid", "charge.paid"]
    purchase_event_names: list[str] = ["order.paid", "charge.paid"]
    conversion_max_attempts: int = 3
    conversion_backoff_seconds: float = 0.5

    # --- Outbound HTTP ---
    http_timeout_seconds: float = 10.0

    # --- Abuse protection ---
    rate_limit_checkout_per_minute: int = 30

    model_config = {"env_prefix": "PAYLINK_", "env_file": ".env"}

    @property
    def provider_configured(self) -> bool:
        return bool(self.pagarme_api_key)

    @property
    def meta_configured(self) -> bool:
        return bool(self.meta_pixel_id and self.meta_access_token)

    def precreated_link_values(self) -> dict[str, str]:
        """Raw operator-configured link per plan id (empty values dropped)."""
        raw = {
            "experience": self.paymentlink_experience,
            "last_option": self.paymentlink_last_option,
            "transformation": self.paymentlink_transformation,
        }
        return {plan_id: value.strip() for plan_id, value in raw.items() if value and value.strip()}

    def data_path(self, filename: str) -> Path:
        return Path(self.data_dir) / filename


@lru_cache
def get_settings() -> Settings:
    return Settings()
