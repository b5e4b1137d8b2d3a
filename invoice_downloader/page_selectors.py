# File: invoice_downloader/page_selectors.py
BASE_URL = "https://www.amazon.com"

SIGNIN_URL = (
    f"{BASE_URL}/ap/signin?openid.pape.max_auth_age=0"
    "&openid.return_to=https%3A%2F%2Fwww.amazon.com%2F%3Fref_%3Dnav_signin"
    "&openid.identity=http%3A%2F%2Fspecs.openid.net%2Fauth%2F2.0%2Fidentifier_select"
    "&openid.assoc_handle=usflex&openid.mode=checkid_setup"
    "&openid.claimed_id=http%3A%2F%2Fspecs.openid.net%2Fauth%2F2.0%2Fidentifier_select"
    "&openid.ns=http%3A%2F%2Fspecs.openid.net%2Fauth%2F2.0"
)


def order_history_url(year: int) -> str:
    return f"{BASE_URL}/gp/your-account/order-history?timeFilter=year-{year}"


# Sign-in
LOGIN_EMAIL = "#ap_email"
LOGIN_CONTINUE = "#continue"
LOGIN_PASSWORD = "#ap_password"
LOGIN_SUBMIT = "#signInSubmit"
LOGIN_CAPTCHA = "#auth-captcha-image"
LOGIN_SUCCESS = "#nav-link-accountList"

# Order history
ORDER_CARD = ".order-card"
ORDER_ID = "div[class*='order-id']"
WHOLE_FOODS_BADGE = "img[alt*='Whole Foods']"
AMAZON_FRESH_BADGE = "img[alt*='Amazon Fresh']"
INVOICE_LINK = "a.a-link-normal:has-text('View Invoice')"
NEXT_PAGE = "ul.a-pagination li.a-last:not(.a-disabled)"

# Invoice snapshot rendering
SNAPSHOT_PDF_OPTIONS = {
    "format": "A4",
    "print_background": True,
    "margin": {"top": "20px", "right": "20px", "bottom": "20px", "left": "20px"},
}
