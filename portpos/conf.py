from dataclasses import dataclass

from django.conf import settings


@dataclass(frozen=True)
class PortPosConfig:
    app_key: str = ""
    secret_key: str = ""
    sandbox: bool = False
    integration_method: str = "redirect"
    currency: str = "BDT"
    timeout: int = 45
    site_url: str = ""
    site_name: str = ""
    checkout_url: str = "/checkout/"
    success_url: str = "/checkout/success/"

    @property
    def has_credentials(self) -> bool:
        return bool(self.app_key and self.secret_key)


def get_config() -> PortPosConfig:
    """Read ``settings.PORTPOS`` on every call so overrides in tests apply."""
    raw = getattr(settings, "PORTPOS", {}) or {}
    return PortPosConfig(
        app_key=raw.get("APP_KEY", "") or "",
        secret_key=raw.get("SECRET_KEY", "") or "",
        sandbox=bool(raw.get("SANDBOX", False)),
        integration_method=(raw.get("INTEGRATION_METHOD") or "redirect").lower(),
        currency=(raw.get("CURRENCY") or "BDT").upper(),
        timeout=int(raw.get("TIMEOUT", 45)),
        site_url=(raw.get("SITE_URL") or "").rstrip("/"),
        site_name=raw.get("SITE_NAME", "") or "",
        checkout_url=raw.get("CHECKOUT_URL") or "/checkout/",
        success_url=raw.get("SUCCESS_URL") or "/checkout/success/",
    )
