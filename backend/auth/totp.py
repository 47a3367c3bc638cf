"""
Dashboard - TOTP Engine

Time-based one-time passwords (RFC 6238) via pyotp.
30 second steps, 6 digits, SHA1 - the defaults every authenticator app expects.

Security:
- Codes are accepted only within +/- window steps of the server clock
- Secrets and codes are never logged
"""

import base64
import binascii
import io
from dataclasses import dataclass

import pyotp
import qrcode


@dataclass(frozen=True)
class TOTPSecret:
    """A freshly generated secret and its provisioning URI."""
    secret: str
    otpauth_uri: str


def generate_secret(account_label: str, issuer: str) -> TOTPSecret:
    """
    Generate a new base32 secret and its otpauth:// URI.

    Args:
        account_label: Account name shown in the authenticator (e.g. "host:user@example.com")
        issuer: Issuer label shown in the authenticator

    Returns:
        TOTPSecret with secret and otpauth_uri
    """
    secret = pyotp.random_base32()
    uri = pyotp.TOTP(secret).provisioning_uri(name=account_label, issuer_name=issuer)
    return TOTPSecret(secret=secret, otpauth_uri=uri)


def verify_code(secret: str, code: str, window: int) -> bool:
    """
    Check a submitted code against a secret.

    Args:
        secret: base32 secret
        code: Code typed by the user
        window: Number of 30s steps tolerated either side of now (>= 1)

    Returns:
        True if the code is valid inside the window
    """
    if window < 1:
        raise ValueError("window must be at least 1")
    if not secret or not code:
        return False

    code = code.strip().replace(" ", "")
    if not code.isdigit() or len(code) != 6:
        return False

    try:
        return pyotp.TOTP(secret).verify(code, valid_window=window)
    except (ValueError, TypeError, binascii.Error):
        # Malformed secret
        return False


def render_qr_data_uri(otpauth_uri: str) -> str:
    """
    Render an otpauth URI as a PNG data URI for <img src="...">.
    """
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(otpauth_uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    encoded = base64.b64encode(buf.getvalue()).decode()
    return f"data:image/png;base64,{encoded}"
