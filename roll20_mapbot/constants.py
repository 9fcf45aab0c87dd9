"""Roll20 URLs, CSS selectors, and label texts matched on the page."""

# ── URLs ─────────────────────────────────────────────────────────────────────

ROLL20_BASE = "https://roll20.net"
ROLL20_APP_BASE = "https://app.roll20.net"
ROLL20_EDITOR_URL = f"{ROLL20_APP_BASE}/editor/setcampaign/"  # append campaign id

# ── CSS Selectors ────────────────────────────────────────────────────────────

SELECTORS = {
    # Landing page / sign in
    "signin_menu": "#menu-signin",
    "login_email": "#input_login-email",
    "login_password": "#input_login-password",
    "button": ".btn",

    # Game listing
    "game_link": ".listing .gameinfo a:first-child",

    # Editor
    "journal_tab": "a[href$='#journal']",
    "journal_item": ".journalitem",
    "journal_name": ".journalitem .name",
    "print_sheet": "#printsheet",
    "dialog_close": ".ui-icon-closethick",
}

# ── Label Texts ──────────────────────────────────────────────────────────────

SIGN_IN_LABEL = "Sign in"

# Journal entry shared by the whole party, not a character.
RESERVED_SHEET_NAME = "Shared Inventory"

# ── Editor readiness ─────────────────────────────────────────────────────────

EDITOR_READY_SCRIPT = (
    "() => Boolean(window.Campaign && window.Campaign.activePage"
    " && window.Campaign.activePage())"
)

# ── File names in the scratch directory ──────────────────────────────────────

MAP_DOWNLOAD_NAME = "map.png"
SHEET_PRINT_NAME = "sheet.pdf"
