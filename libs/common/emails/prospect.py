"""
Prospecting email sent to live sellers from the admin page.
"""

from libs.common.emails.core import send_email

PROSPECT_SUBJECT = "Une solution simple pour booster tes ventes en live 🎉"


def build_prospect_bodies() -> tuple[str, str]:
    """Return the (plain text, html) bodies of the prospecting email."""
    text = (
        "Bonjour 😊,\n\n"
        "J'ai regardé plusieurs de tes lives récemment, et franchement tu gères "
        "super bien !\n\n"
        "Avec Paylive, tes clientes paient directement pendant le live : un lien "
        "de boutique, un panier, un paiement sécurisé par Stripe et l'expédition "
        "en point relais ou à domicile gérée pour toi.\n\n"
        "Si ça t'intéresse, réponds simplement à cet email et je te montre en "
        "10 minutes comment ça marche.\n\n"
        "À très vite,\nL'équipe Paylive\nhttps://paylive.cc"
    )
    paragraphs = "".join(f"<p>{p}</p>" for p in text.split("\n\n"))
    html = f"""<!DOCTYPE html>
<html lang="fr">
<head><meta charset="UTF-8" /><title>Paylive</title></head>
<body style="margin:0;padding:0;background:#f7f7fb;font-family:Arial,sans-serif;color:#0f172a;">
  <div style="max-width:720px;margin:0 auto;background:#ffffff;border-radius:12px;overflow:hidden;">
    <div style="background:linear-gradient(90deg,#7c3aed,#2563eb);padding:24px;text-align:center;">
      <div style="font-size:24px;font-weight:800;color:#ffffff;">Paylive</div>
      <div style="margin-top:8px;font-size:14px;color:#e5e7eb;">Encaissement instantané pendant tes lives</div>
    </div>
    <div style="padding:28px;font-size:16px;line-height:1.6;">
      {paragraphs}
    </div>
  </div>
</body>
</html>"""
    return text, html


async def send_prospect_email(to_email: str) -> bool:
    """Send the prospecting email. Returns False when SMTP delivery failed."""
    text, html = build_prospect_bodies()
    return await send_email(
        to_email=to_email,
        subject=PROSPECT_SUBJECT,
        body=text,
        html_body=html,
    )
