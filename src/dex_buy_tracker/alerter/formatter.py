"""Buy alert message formatter for Telegram delivery.

This module transforms BuyAlert objects plus a group's display preferences
into Telegram HTML messages with inline URL buttons.
"""

from __future__ import annotations

import html
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal

from dex_buy_tracker.alerter.models import InlineButton, MediaKind, RenderedAlert
from dex_buy_tracker.detector.models import BuyAlert
from dex_buy_tracker.storage.settings_store import GroupSettings

# Chart URLs
DEXSCREENER_PAIR_URL = "https://dexscreener.com/{chain}/{pair}"
DEXTOOLS_PAIR_URL = "https://www.dextools.io/app/{network}/pair-explorer/{pair}"
DEFAULT_EXPLORER = "https://etherscan.io"

# Header tiers (rounded USD)
WHALE_THRESHOLD_USD = 5000
BIG_BUY_THRESHOLD_USD = 3000
STRONG_BUY_THRESHOLD_USD = 1000

WHALE_LOADING_PCT = 500
MAX_EMOJIS = 50
DEFAULT_DOLLARS_PER_EMOJI = 50.0
LOW_LIQ_MARKET_CAP_USD = 1000

# chain -> (emoji, native symbol)
NATIVE_DISPLAY: dict[str, tuple[str, str]] = {
    "bsc": ("🟡", "BNB"),
    "ethereum": ("🔹", "ETH"),
    "base": ("🟦", "ETH"),
    "arbitrum": ("🌀", "ETH"),
    "polygon": ("🟣", "POL"),
    "avalanche": ("🔺", "AVAX"),
    "monad": ("💜", "MON"),
}
DEFAULT_NATIVE_DISPLAY = ("💠", "NATIVE")

DEXTOOLS_NETWORKS = {
    "bsc": "bsc",
    "base": "base",
    "monad": "monad",
    "arbitrum": "arbitrum",
    "polygon": "polygon",
    "avalanche": "avalanche",
}


def escape(text: str) -> str:
    """Escape text for Telegram HTML parse mode."""
    return html.escape(text, quote=False)


def shorten_address(address: str, chars: int = 6) -> str:
    """Shorten an address to 0x1234...cdef format."""
    if not address or len(address) <= chars * 2:
        return address
    return f"{address[:chars]}...{address[-(chars - 2):]}"


def round_usd(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_compact_usd(value: Decimal | float) -> str:
    """Compact USD figure: 620K, 75.4M, 2M."""
    value = float(value)
    if value >= 1_000_000:
        text = f"{value / 1_000_000:.2f}"
        if text.endswith(".00"):
            text = text[:-3]
        return f"{text}M"
    if value >= 1_000:
        return f"{round(value / 1_000)}K"
    return f"{value:.0f}"


def format_volume(value: Decimal | float) -> str:
    value = float(value)
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    return f"{value / 1_000:.0f}K"


def format_token_amount(amount: Decimal) -> str:
    """Thousands separators, two decimals for amounts >= 1, more for dust."""
    if amount >= 1:
        return f"{amount:,.2f}"
    if amount == 0:
        return "0"
    return f"{amount:.8f}".rstrip("0").rstrip(".")


def header_line(buy_usd: int) -> str:
    if buy_usd >= WHALE_THRESHOLD_USD:
        return "🐳 <b>WHALE INCOMING!!!</b> 🐳"
    if buy_usd >= BIG_BUY_THRESHOLD_USD:
        return "🚨🚨 <b>BIG BUY DETECTED!</b> 🚨🚨"
    if buy_usd >= STRONG_BUY_THRESHOLD_USD:
        return "🟢🟢🟢 <b>Strong Buy</b> 🟢🟢🟢"
    return "🟢 <b>New Buy</b> 🟢"


def emoji_bar(buy_usd: int, emoji: str, dollars_per_emoji: float) -> str:
    per_emoji = dollars_per_emoji if dollars_per_emoji > 0 else DEFAULT_DOLLARS_PER_EMOJI
    count = int(buy_usd // per_emoji)
    return emoji * max(0, min(MAX_EMOJIS, count))


class BuyAlertFormatter:
    """Renders BuyAlerts as Telegram HTML messages.

    Explorer base URLs are looked up per chain; unknown chains fall back to
    Etherscan.
    """

    def __init__(
        self,
        explorers: Mapping[str, str] | None = None,
        *,
        trending_url: str | None = None,
        ads_url: str | None = None,
    ) -> None:
        self._explorers = {k: v.rstrip("/") for k, v in (explorers or {}).items() if v}
        self._trending_url = trending_url
        self._ads_url = ads_url

    def explorer_for(self, chain: str) -> str:
        return self._explorers.get(chain, DEFAULT_EXPLORER)

    def format(self, alert: BuyAlert, settings: GroupSettings) -> RenderedAlert:
        """Format one alert for one group.

        Args:
            alert: The enriched buy.
            settings: The receiving group's display preferences.

        Returns:
            RenderedAlert with text, buttons and media selection.
        """
        media_kind, media = self._select_media(settings)
        return RenderedAlert(
            text=self._build_text(alert, settings),
            buttons=self._build_buttons(settings),
            media_kind=media_kind,
            media=media,
        )

    def _build_text(self, alert: BuyAlert, settings: GroupSettings) -> str:
        buy_usd = round_usd(alert.usd_value)
        explorer = self.explorer_for(alert.chain)
        native_emoji, native_symbol = NATIVE_DISPLAY.get(alert.chain, DEFAULT_NATIVE_DISPLAY)

        base_symbol = escape(alert.base_symbol or native_symbol)
        target_symbol = escape(alert.target_symbol)
        buyer_short = escape(shorten_address(alert.buyer))

        market_cap = (
            format_compact_usd(alert.market_cap_usd)
            if alert.market_cap_usd > LOW_LIQ_MARKET_CAP_USD
            else "Low Liq"
        )

        lines = [header_line(buy_usd)]
        if alert.position_increase_pct is not None and alert.position_increase_pct > WHALE_LOADING_PCT:
            lines.append("🚀🚀 <b>WHALE LOADING!</b> 🚀🚀")
        lines += [
            "",
            f"💰 <b>${buy_usd:,}</b> {target_symbol} BUY",
            "",
            emoji_bar(buy_usd, settings.emoji, settings.dollars_per_emoji),
            "",
            f"{native_emoji} <b>{base_symbol}:</b> {alert.base_amount:,.2f} (${buy_usd:,})",
            f"💳 {target_symbol}: {format_token_amount(alert.target_amount)}",
            "",
            f'🔗 <a href="{explorer}/address/{alert.pool_address}">View Pair</a>'
            f" → ${format_compact_usd(alert.liquidity_usd)} LP",
            "",
            f'👤 Buyer: <a href="{explorer}/address/{alert.buyer}">{buyer_short}</a>',
            f'🔶 <a href="{explorer}/tx/{alert.tx_hash}">View Transaction</a>',
            f"📊 MC: ${market_cap}",
            f"🔥 Volume (24h): ${format_volume(alert.volume_24h_usd)}",
            "",
            self._chart_links(alert),
        ]
        return "\n".join(lines).strip()

    def _chart_links(self, alert: BuyAlert) -> str:
        dexscreener = DEXSCREENER_PAIR_URL.format(chain=alert.chain, pair=alert.pool_address)
        dextools = DEXTOOLS_PAIR_URL.format(
            network=DEXTOOLS_NETWORKS.get(alert.chain, "ether"),
            pair=alert.pool_address,
        )
        links = [f'<a href="{dextools}">DexT</a>', f'<a href="{dexscreener}">DexS</a>']
        if self._trending_url:
            links.append(f'<a href="{self._trending_url}">Trending</a>')
        return "🔗 " + " | ".join(links)

    def _build_buttons(self, settings: GroupSettings) -> tuple[InlineButton, ...]:
        buttons: list[InlineButton] = []
        if settings.tg_group_link:
            buttons.append(InlineButton(text="👥 Join Group", url=settings.tg_group_link))
        if self._ads_url:
            buttons.append(InlineButton(text="✉️ DM for Ads", url=self._ads_url))
        return tuple(buttons)

    @staticmethod
    def _select_media(settings: GroupSettings) -> tuple[MediaKind, str | None]:
        if settings.animation_file_id:
            return MediaKind.ANIMATION, settings.animation_file_id
        if settings.image_file_id:
            return MediaKind.PHOTO, settings.image_file_id
        if settings.image_url:
            if settings.image_url.lower().endswith(".gif"):
                return MediaKind.ANIMATION, settings.image_url
            return MediaKind.PHOTO, settings.image_url
        return MediaKind.TEXT, None
