from __future__ import annotations

import reflex as rx

from .services import SessionPhase
from .state import TRANSACTION_LABELS, AtmState


COLORS = {
    "bg_primary": "#0a0a0b",
    "bg_secondary": "#151518",
    "bg_tertiary": "#1a1a1d",
    "border": "#27272a",
    "border_subtle": "#1f1f23",
    "text_primary": "#ffffff",
    "text_secondary": "#a1a1aa",
    "accent_purple": "#8b5cf6",
    "accent_blue": "#3b82f6",
    "accent_cyan": "#06b6d4",
    "success": "#10b981",
    "warning": "#f59e0b",
    "error": "#ef4444",
}


def card(*children, **kwargs) -> rx.Component:
    """Dark card used for every panel on the page."""
    default_style = {
        "background": COLORS["bg_secondary"],
        "border": f"1px solid {COLORS['border']}",
        "border_radius": "12px",
        "padding": "24px",
        "display": "flex",
        "flex_direction": "column",
        "gap": "16px",
        "width": "100%",
        "box_shadow": "0 4px 6px -1px rgba(0, 0, 0, 0.3), 0 2px 4px -1px rgba(0, 0, 0, 0.2)",
    }
    return rx.box(*children, **{**default_style, **kwargs})


def styled_button(text, color_scheme: str = "blue", **kwargs) -> rx.Component:
    color_map = {
        "purple": COLORS["accent_purple"],
        "blue": COLORS["accent_blue"],
        "cyan": COLORS["accent_cyan"],
        "success": COLORS["success"],
        "warning": COLORS["warning"],
        "error": COLORS["error"],
    }

    bg_color = color_map.get(color_scheme, COLORS["accent_blue"])

    return rx.button(
        text,
        background=bg_color,
        color="white",
        border="none",
        border_radius="8px",
        padding_x="20px",
        padding_y="10px",
        font_weight="500",
        font_size="14px",
        cursor="pointer",
        transition="all 0.2s",
        _hover={
            "opacity": "0.9",
            "transform": "translateY(-1px)",
        },
        **kwargs,
    )


def muted(text) -> rx.Component:
    return rx.text(text, color=COLORS["text_secondary"], size="3")


def account_line() -> rx.Component:
    return rx.text(
        "Your Account: ",
        rx.code(AtmState.account),
        color=COLORS["text_primary"],
        size="3",
    )


def no_wallet_view() -> rx.Component:
    return card(
        rx.hstack(
            rx.icon(tag="wallet", size=18, color=COLORS["warning"]),
            rx.text(
                "Please install a wallet in order to use this ATM.",
                color=COLORS["text_primary"],
                size="3",
            ),
            align_items="center",
            gap="8px",
        ),
    )


def connect_view() -> rx.Component:
    return card(
        rx.cond(
            AtmState.account == "",
            muted("Connect your wallet to load the ATM balance."),
            account_line(),
        ),
        styled_button(
            "Please connect your wallet",
            color_scheme="purple",
            on_click=AtmState.connect_account,
        ),
    )


def loading_view() -> rx.Component:
    return card(
        account_line(),
        rx.hstack(
            rx.spinner(size="2"),
            muted("Loading balance..."),
            rx.spacer(),
            styled_button("Retry", color_scheme="blue", on_click=AtmState.retry_balance),
            align_items="center",
            gap="8px",
            width="100%",
        ),
    )


def transaction_button(action: str, color_scheme: str) -> rx.Component:
    return styled_button(
        rx.cond(
            AtmState.pending_action == action,
            rx.hstack(rx.spinner(size="1"), rx.text("Waiting for confirmation..."), gap="6px"),
            rx.text(TRANSACTION_LABELS[action]),
        ),
        color_scheme=color_scheme,
        disabled=AtmState.pending_action != "",
        on_click=AtmState.submit_transaction(action),
    )


def ledger_view() -> rx.Component:
    usd = rx.cond(
        AtmState.usd_text == "",
        rx.tooltip(
            rx.text.span("Loading...", color=COLORS["text_secondary"]),
            content=rx.cond(
                AtmState.price_failed,
                "The price service did not answer; the estimate is still pending.",
                "Fetching the ETH to USD rate.",
            ),
        ),
        rx.text.span(AtmState.usd_text),
    )
    return card(
        account_line(),
        rx.text(
            "Ledger Owner: ",
            rx.code(AtmState.owner),
            color=COLORS["text_secondary"],
            size="2",
        ),
        rx.text(
            "Your Balance: ",
            rx.text.span(AtmState.balance_text, font_weight="600"),
            " ETH (",
            usd,
            ")",
            color=COLORS["text_primary"],
            size="3",
        ),
        rx.hstack(
            transaction_button("deposit", "success"),
            transaction_button("withdraw", "warning"),
            transaction_button("double_balance", "cyan"),
            gap="12px",
            flex_wrap="wrap",
        ),
    )


def session_view() -> rx.Component:
    """Render exactly one view for the current session phase."""
    return rx.cond(
        AtmState.session_ready,
        rx.match(
            AtmState.phase,
            (SessionPhase.NO_WALLET.value, no_wallet_view()),
            (SessionPhase.WALLET_FOUND.value, connect_view()),
            (SessionPhase.ACCOUNT_CONNECTED.value, connect_view()),
            (SessionPhase.LEDGER_BOUND.value, loading_view()),
            (SessionPhase.BALANCE_LOADED.value, ledger_view()),
            no_wallet_view(),
        ),
        card(rx.hstack(rx.spinner(size="2"), muted("Looking for a wallet..."), gap="8px")),
    )


def log_entry_item(entry):
    badge = rx.box(
        entry["level_label"],
        background=entry["color"],
        color="white",
        padding_x="8px",
        padding_y="4px",
        border_radius="999px",
        font_size="11px",
        font_weight="600",
        letter_spacing="0.02em",
    )
    return rx.box(
        rx.vstack(
            rx.hstack(
                badge,
                rx.text(
                    entry["timestamp"],
                    color=COLORS["text_secondary"],
                    size="1",
                ),
                rx.spacer(),
                rx.text(
                    entry["action"],
                    color=COLORS["text_primary"],
                    font_weight="600",
                    size="2",
                ),
                align_items="center",
                width="100%",
                gap="8px",
            ),
            rx.text(
                entry["message"],
                color=COLORS["text_primary"],
                size="2",
            ),
            rx.cond(
                entry["detail"] == "",
                rx.fragment(),
                rx.text(
                    entry["detail"],
                    color=COLORS["text_secondary"],
                    font_family="'Fira Code', 'Monaco', 'Courier New', monospace",
                    font_size="12px",
                    white_space="pre-wrap",
                    background=COLORS["bg_secondary"],
                    border=f"1px solid {COLORS['border']}",
                    border_radius="8px",
                    padding="10px",
                    width="100%",
                ),
            ),
            spacing="3",
            width="100%",
        ),
        width="100%",
        padding="12px",
        border=f"1px solid {COLORS['border_subtle']}",
        border_radius="10px",
        background=COLORS["bg_tertiary"],
    )


def log_section() -> rx.Component:
    entries = rx.cond(
        AtmState.log_entries == [],
        muted("Wallet and transaction activity will appear here with the latest at the bottom."),
        rx.box(
            rx.vstack(
                rx.foreach(AtmState.log_entries, log_entry_item),
                gap="12px",
                width="100%",
            ),
            max_height="360px",
            overflow="auto",
            width="100%",
        ),
    )

    return card(
        rx.hstack(
            rx.icon(tag="list", size=18, color=COLORS["accent_cyan"]),
            rx.heading("Activity Log", size="5", color=COLORS["text_primary"], font_weight="600"),
            rx.spacer(),
            styled_button("Reset Session", color_scheme="blue", on_click=AtmState.reset_session),
            rx.cond(
                AtmState.log_entries == [],
                rx.fragment(),
                styled_button("Clear Log", color_scheme="warning", on_click=AtmState.clear_logs),
            ),
            align_items="center",
            gap="8px",
            width="100%",
        ),
        entries,
    )


def header() -> rx.Component:
    return rx.box(
        rx.heading(
            "Welcome to the Metacrafters ATM!",
            size="8",
            background=f"linear-gradient(135deg, {COLORS['accent_purple']} 0%, {COLORS['accent_cyan']} 100%)",
            background_clip="text",
            color="transparent",
            font_weight="700",
            letter_spacing="-0.02em",
        ),
        padding_y="32px",
        width="100%",
        text_align="center",
    )


def index() -> rx.Component:
    return rx.box(
        rx.vstack(
            header(),
            session_view(),
            log_section(),
            spacing="5",
            width="100%",
            max_width="760px",
            margin_x="auto",
            padding_x=["16px", "24px", "32px"],
            padding_bottom="64px",
        ),
        background=COLORS["bg_primary"],
        min_height="100vh",
        width="100%",
    )


app = rx.App(
    theme=rx.theme(
        appearance="dark",
        accent_color="cyan",
        gray_color="slate",
        radius="large",
        scaling="100%",
    ),
)

app.add_page(
    index,
    title="Metacrafters ATM",
    on_load=AtmState.on_load,
)
