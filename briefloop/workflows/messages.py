"""Outbound message templates, in English and French."""
from typing import Dict, Iterable

DEFAULT_LOCALE = "en"
SUPPORTED_LOCALES = ("en", "fr")
PREVIEW_CHARS = 100

_TEMPLATES: Dict[str, Dict[str, str]] = {
    "scheduling_prompt": {
        "en": (
            "🍽️ Image received! We're ready to create content for you.\n\n"
            "When would you like us to call you for your briefing?\n\n"
            "Reply with:\n"
            "1 - Now\n"
            "2 - In 30 minutes\n"
            "3 - In 1 hour\n"
            "4 - Tell me the time (e.g., 3:30 PM)\n\n"
            "Session: {short_id}"
        ),
        "fr": (
            "🍽️ Image reçue ! Nous sommes prêts à créer du contenu pour vous.\n\n"
            "Quand voulez-vous que nous vous appelions pour le briefing ?\n\n"
            "Répondez avec :\n"
            "1 - Maintenant\n"
            "2 - Dans 30 minutes\n"
            "3 - Dans 1 heure\n"
            "4 - Dites-moi l'heure (ex: 15:30)\n\n"
            "Session: {short_id}"
        ),
    },
    "ask_for_time": {
        "en": "🕒 What time works for you? Reply with a time like 3:30 PM or 15:30.\n\nSession: {short_id}",
        "fr": "🕒 Quelle heure vous convient ? Répondez avec une heure comme 15:30 ou 15h30.\n\nSession: {short_id}",
    },
    "scheduled_immediate": {
        "en": "🎙️ Perfect! I'll call you in 2 minutes for your content briefing.\n\nGet ready to tell me about your dish!",
        "fr": "🎙️ Parfait ! Je vous appelle dans 2 minutes pour votre briefing.\n\nPréparez-vous à me parler de votre plat !",
    },
    "scheduled": {
        "en": "✅ Scheduled! I'll call you at {time} for your content briefing.\n\nSession: {short_id}",
        "fr": "✅ C'est noté ! Je vous appelle à {time} pour votre briefing.\n\nSession: {short_id}",
    },
    "session_exists": {
        "en": "⏳ You already have a briefing in progress (status: {status}). Reply STATUS for details or CANCEL to start over.\n\nSession: {short_id}",
        "fr": "⏳ Un briefing est déjà en cours (statut : {status}). Répondez STATUS pour le détail ou CANCEL pour recommencer.\n\nSession: {short_id}",
    },
    "pre_call": {
        "en": "🎙️ Calling you now for your content briefing!\n\nPlease answer the call and tell me about your dish.\n\nSession: {short_id}",
        "fr": "🎙️ Nous vous appelons maintenant pour votre briefing !\n\nDécrochez et parlez-moi de votre plat.\n\nSession: {short_id}",
    },
    "session_failed": {
        "en": "😔 Sorry, we couldn't complete your briefing call. Send your photo again whenever you're ready.",
        "fr": "😔 Désolé, nous n'avons pas pu terminer votre appel. Renvoyez votre photo quand vous serez prêt.",
    },
    "briefing_complete": {
        "en": "🙏 Thanks for the briefing! We're creating your content and will send it for approval shortly.\n\nSession: {short_id}",
        "fr": "🙏 Merci pour le briefing ! Nous créons votre contenu et vous l'enverrons pour validation.\n\nSession: {short_id}",
    },
    "cancelled": {
        "en": "🛑 Your briefing has been cancelled. Send a new photo to start again.\n\nSession: {short_id}",
        "fr": "🛑 Votre briefing est annulé. Envoyez une nouvelle photo pour recommencer.\n\nSession: {short_id}",
    },
    "stopped": {
        "en": "🛑 Done. We won't contact you about this briefing again. Send a new photo any time to start over.",
        "fr": "🛑 C'est fait. Nous ne vous contacterons plus pour ce briefing. Envoyez une photo pour recommencer.",
    },
    "reschedule_unavailable": {
        "en": "There is no scheduled briefing to move. Send a photo to start a new one.",
        "fr": "Aucun briefing planifié à déplacer. Envoyez une photo pour en commencer un.",
    },
    "start_over": {
        "en": "❌ No active session found. Please send a new image to start.",
        "fr": "❌ Aucune session active. Envoyez une nouvelle image pour commencer.",
    },
    "help": {
        "en": (
            "🍽️ Commands:\n\n"
            "STATUS - Check your current briefing\n"
            "RESCHEDULE <time> - Move your call\n"
            "CANCEL - Cancel your current briefing\n"
            "STOP - Stop messages for this briefing\n"
            "HELP - Show this menu\n\n"
            "Or send a photo to start a new briefing."
        ),
        "fr": (
            "🍽️ Commandes :\n\n"
            "STATUS - Voir votre briefing en cours\n"
            "RESCHEDULE <heure> - Déplacer votre appel\n"
            "CANCEL - Annuler votre briefing\n"
            "STOP - Ne plus recevoir de messages pour ce briefing\n"
            "HELP - Afficher ce menu\n\n"
            "Ou envoyez une photo pour commencer un briefing."
        ),
    },
    "unknown_command": {
        "en": "❓ Command not recognized. Reply \"HELP\" for available commands.",
        "fr": "❓ Commande non reconnue. Répondez \"HELP\" pour la liste des commandes.",
    },
    "status_session": {
        "en": "📊 Briefing {short_id}: {status}{when}",
        "fr": "📊 Briefing {short_id} : {status}{when}",
    },
    "status_workflow": {
        "en": "📊 Content {short_id} is waiting for your approval ({status}). Reply APPROVE, EDIT, REJECT or VIEW.",
        "fr": "📊 Le contenu {short_id} attend votre validation ({status}). Répondez APPROVE, EDIT, REJECT ou VIEW.",
    },
    "status_idle": {
        "en": "📊 Nothing in progress. Send a photo to start a briefing.",
        "fr": "📊 Rien en cours. Envoyez une photo pour commencer un briefing.",
    },
    "content_ready": {
        "en": (
            "🚀 Your content is ready!\n\n"
            "Preview: {preview}\n\n"
            "Platforms: {platforms}\n\n"
            "Reply with:\n"
            "✅ APPROVE - Post it now\n"
            "✏️ EDIT - Make changes\n"
            "👀 VIEW - See full content\n"
            "❌ REJECT - Start over\n\n"
            "Session: {short_id}"
        ),
        "fr": (
            "🚀 Votre contenu est prêt !\n\n"
            "Aperçu : {preview}\n\n"
            "Plateformes : {platforms}\n\n"
            "Répondez avec :\n"
            "✅ APPROVE - Publier maintenant\n"
            "✏️ EDIT - Modifier\n"
            "👀 VIEW - Voir le contenu complet\n"
            "❌ REJECT - Recommencer\n\n"
            "Session: {short_id}"
        ),
    },
    "approval_reprompt": {
        "en": "Please reply with: APPROVE, EDIT, REJECT, or VIEW",
        "fr": "Merci de répondre par : APPROVE, EDIT, REJECT ou VIEW",
    },
    "approved": {
        "en": "✅ Content approved and scheduled for publishing! 🚀",
        "fr": "✅ Contenu validé et programmé pour publication ! 🚀",
    },
    "already_approved": {
        "en": "✅ This content is already approved.",
        "fr": "✅ Ce contenu est déjà validé.",
    },
    "editing": {
        "en": "✏️ What would you like to change? Reply with your edits, then APPROVE or REJECT when you're happy.",
        "fr": "✏️ Que voulez-vous changer ? Répondez avec vos modifications, puis APPROVE ou REJECT.",
    },
    "edit_received": {
        "en": "📝 Got it, we're revising your content. Reply APPROVE or REJECT when you're ready.",
        "fr": "📝 Bien reçu, nous révisons votre contenu. Répondez APPROVE ou REJECT quand vous êtes prêt.",
    },
    "rejected": {
        "en": "❌ Content rejected and discarded. We'll create better options next time!",
        "fr": "❌ Contenu refusé et supprimé. Nous ferons mieux la prochaine fois !",
    },
    "view": {
        "en": "📱 View your content at: {url}",
        "fr": "📱 Voir votre contenu : {url}",
    },
    "expired": {
        "en": "⌛ This approval has expired. Please resend your photo to start again.",
        "fr": "⌛ Cette validation a expiré. Renvoyez votre photo pour recommencer.",
    },
    "publish_delayed": {
        "en": "⏳ We couldn't publish just now. Reply APPROVE again in a moment to retry.",
        "fr": "⏳ Publication impossible pour le moment. Répondez APPROVE dans un instant pour réessayer.",
    },
    "posting_complete": {
        "en": "🎉 Your content is now live! Posted to {platforms}.\n\nTotal posts: {count}\n\nSession: {short_id}",
        "fr": "🎉 Votre contenu est en ligne ! Publié sur {platforms}.\n\nTotal : {count}\n\nSession: {short_id}",
    },
}


def normalize_locale(locale: str) -> str:
    locale = (locale or DEFAULT_LOCALE).lower()[:2]
    return locale if locale in SUPPORTED_LOCALES else DEFAULT_LOCALE


def render(name: str, locale: str = DEFAULT_LOCALE, **values) -> str:
    variants = _TEMPLATES[name]
    template = variants.get(normalize_locale(locale)) or variants[DEFAULT_LOCALE]
    return template.format(**values)


def caption_preview(caption: str) -> str:
    caption = (caption or "").strip()
    if len(caption) <= PREVIEW_CHARS:
        return caption
    return caption[:PREVIEW_CHARS] + "..."


def platform_list(platforms: Iterable[str], locale: str = DEFAULT_LOCALE) -> str:
    names = [p for p in platforms if p]
    if names:
        return ", ".join(names)
    return "Plusieurs" if normalize_locale(locale) == "fr" else "Multiple"
