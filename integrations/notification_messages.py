"""
Message templates for label notifications (WhatsApp and webhook).

Usage:
    from integrations.notification_messages import get_message

    message = get_message("client_label_ready",
        name="Maria",
        product="Livro Físico",
        code="AA123456789BR",
        tracking_link="https://rastreamento.correios.com.br?objeto=AA123456789BR"
    )
"""

from config import settings

MESSAGES = {
    "pt": {
        # Client messages
        "client_label_ready": """Olá, {name}! 📦

Seu pedido *{product}* já foi preparado para envio.

Código de rastreio: *{code}*
Acompanhe: {tracking_link}""",

        # Admin summary
        "admin_header": """📦 *Etiquetas Geradas*

Total: {total} etiqueta(s)""",
        "admin_new_section": "✨ *{count} NOVA(S):*",
        "admin_old_section": "📋 *{count} JÁ GERADA(S):*",
        "admin_label_entry": """🏷️ {code}
👤 {name}
📍 {city}/{state}
📦 {product}""",
        "admin_merged_entry": "🔗 *MESCLADO ({count} pedidos):*",
    },
    "en": {
        "client_label_ready": """Hi {name}! 📦

Your order *{product}* is ready to ship.

Tracking code: *{code}*
Track it: {tracking_link}""",

        "admin_header": """📦 *Labels generated*

Total: {total} label(s)""",
        "admin_new_section": "✨ *{count} NEW:*",
        "admin_old_section": "📋 *{count} ALREADY GENERATED:*",
        "admin_label_entry": """🏷️ {code}
👤 {name}
📍 {city}/{state}
📦 {product}""",
        "admin_merged_entry": "🔗 *MERGED ({count} orders):*",
    },
}


def get_message(key: str, **kwargs) -> str:
    """
    Get the message template for the configured language and format it.

    Args:
        key: Message template key
        **kwargs: Format arguments for the template

    Returns:
        Formatted message string
    """
    lang_messages = MESSAGES.get(settings.notification_language, MESSAGES["pt"])
    template = lang_messages.get(key, MESSAGES["pt"].get(key, key))
    try:
        return template.format(**kwargs)
    except KeyError:
        return template


def format_admin_summary(entries: list[dict]) -> str:
    """
    Build the admin WhatsApp summary.

    Args:
        entries: Label entries with code, name, city, state, product,
                 is_new, is_merged and merged_transaction_ids

    Returns:
        New labels first, then labels generated earlier
    """
    new = [e for e in entries if e.get("is_new")]
    old = [e for e in entries if not e.get("is_new")]

    lines = [get_message("admin_header", total=len(entries))]
    for section_key, section in (("admin_new_section", new), ("admin_old_section", old)):
        if not section:
            continue
        lines.append("")
        lines.append(get_message(section_key, count=len(section)))
        for entry in section:
            lines.append("")
            lines.append(get_message(
                "admin_label_entry",
                code=entry.get("code", ""),
                name=entry.get("name", ""),
                city=entry.get("city", ""),
                state=entry.get("state", ""),
                product=entry.get("product", ""),
            ))
            merged_ids = entry.get("merged_transaction_ids") or []
            if entry.get("is_merged") and len(merged_ids) > 1:
                lines.append(get_message("admin_merged_entry", count=len(merged_ids)))
                lines.extend(f"   • {tid}" for tid in merged_ids)

    return "\n".join(lines)
