from __future__ import annotations

DEFAULT_LANGUAGE = "ar"

_CATALOG: dict[str, dict[str, str]] = {
    "ar": {
        "default_image_instruction": "ماذا ترى في هذه الصورة؟ صفها بالتفصيل.",
        "empty_input.title": "الإدخال مطلوب",
        "empty_input.body": "الرجاء كتابة رسالة أو إرفاق/التقاط صورة أو التحدث.",
        "stream_error.reply": "عذرًا، حدث خطأ أثناء إنشاء الرد: {error}",
        "stream_error.title": "خطأ في المحادثة",
        "persist_failed.title": "فشل حفظ الرسالة",
        "history_failed.title": "فشل تحميل سجل المحادثات",
        "identity_failed.title": "فشل تسجيل الدخول",
        "ephemeral.title": "المحادثة غير محفوظة",
        "ephemeral.body": "لم يتم إنشاء هوية للجلسة، لن يتم حفظ الرسائل.",
        "in_flight.body": "يوجد طلب قيد المعالجة بالفعل، يرجى الانتظار.",
        "tts_failed.title": "خطأ في تحويل النص إلى كلام",
        "tts_no_audio": "لم يتم إرجاع محتوى صوتي.",
        "playback_failed.title": "خطأ في تشغيل الصوت",
        "speech_error.title": "خطأ في التعرف على الكلام",
        "speech_busy.title": "الميكروفون يعمل بالفعل",
        "speech_busy.body": "جاري الاستماع...",
        "camera_failed.title": "خطأ في الكاميرا",
        "camera_inactive.body": "الكاميرا غير مفعلة.",
        "image_captured.title": "تم التقاط الصورة",
        "image_captured.body": "سترفق مع رسالتك الحالية.",
        "backend_unavailable.body": "خدمة الذكاء الاصطناعي غير مهيأة.",
    },
    "en": {
        "default_image_instruction": "What do you see in this image? Describe it in detail.",
        "empty_input.title": "Input required",
        "empty_input.body": "Please type a message, attach or capture an image, or speak.",
        "stream_error.reply": "Sorry, an error occurred while generating the reply: {error}",
        "stream_error.title": "Chat error",
        "persist_failed.title": "Failed to save message",
        "history_failed.title": "Failed to load chat history",
        "identity_failed.title": "Sign-in failed",
        "ephemeral.title": "Chat is not saved",
        "ephemeral.body": "No session identity was established, messages will not be saved.",
        "in_flight.body": "A request is already in progress, please wait.",
        "tts_failed.title": "Text-to-speech error",
        "tts_no_audio": "No audio content was returned.",
        "playback_failed.title": "Audio playback error",
        "speech_error.title": "Speech recognition error",
        "speech_busy.title": "Microphone already active",
        "speech_busy.body": "Listening...",
        "camera_failed.title": "Camera error",
        "camera_inactive.body": "The camera is not active.",
        "image_captured.title": "Image captured",
        "image_captured.body": "It will be attached to your current message.",
        "backend_unavailable.body": "The AI service is not configured.",
    },
}


def supported_languages() -> list[str]:
    return sorted(_CATALOG)


def translate(key: str, language: str | None = None, **values: object) -> str:
    """Look up a user-facing string, falling back to the default language and then the key."""
    lang = (language or DEFAULT_LANGUAGE).split("-")[0].lower()
    table = _CATALOG.get(lang) or _CATALOG[DEFAULT_LANGUAGE]
    template = table.get(key) or _CATALOG[DEFAULT_LANGUAGE].get(key) or key
    if values:
        return template.format(**values)
    return template
