"""
Telegram message templates for sync notifications.

Usage:
    from integrations.telegram_messages import get_message

    message = get_message("sync_completed",
        shop=shop_id,
        sync_type="full",
        records=120,
        run_id=run_id
    )
"""

from config.settings import settings

MESSAGES = {
    "en": {
        "sync_started": """🔄 *Sync started*

Shop: `{shop}`
Type: {sync_type}
Run: `{run_id}`""",

        "sync_completed": """✅ *Sync completed*

Shop: `{shop}`
Type: {sync_type}
Records: {records}
Run: `{run_id}`""",

        "sync_failed": """❌ *Sync failed*

Shop: `{shop}`
Type: {sync_type}
Run: `{run_id}`

Error: {error}""",

        "sync_failed_permanently": """🚨 *Sync failed permanently*

Shop: `{shop}`
Run: `{run_id}`
Attempts: {attempts}

Error: {error}

No further automatic retries.""",
    },

    "es": {
        "sync_started": """🔄 *Sincronización iniciada*

Tienda: `{shop}`
Tipo: {sync_type}
Ejecución: `{run_id}`""",

        "sync_completed": """✅ *Sincronización completada*

Tienda: `{shop}`
Tipo: {sync_type}
Registros: {records}
Ejecución: `{run_id}`""",

        "sync_failed": """❌ *Sincronización fallida*

Tienda: `{shop}`
Tipo: {sync_type}
Ejecución: `{run_id}`

Error: {error}""",

        "sync_failed_permanently": """🚨 *Sincronización fallida definitivamente*

Tienda: `{shop}`
Ejecución: `{run_id}`
Intentos: {attempts}

Error: {error}

No habrá más reintentos automáticos.""",
    },
}


def get_message(key: str, **kwargs) -> str:
    """
    Get translated message template and format with kwargs.

    Args:
        key: Message template key
        **kwargs: Format arguments for the template

    Returns:
        Formatted message string in the configured language
    """
    lang_messages = MESSAGES.get(settings.telegram_language, MESSAGES["en"])
    template = lang_messages.get(key, MESSAGES["en"].get(key, key))
    try:
        return template.format(**kwargs)
    except KeyError:
        # Missing argument: send the raw template
        return template
