from src.helly.core.update_normalizer import normalize_update


def _message(**fields):
    return {"update_id": 11, "message": {"message_id": 1, "from": {"id": 5, "username": "ira"}, "chat": {"id": 50}, **fields}}


def test_text_message():
    event = normalize_update(_message(text="Hello"))
    assert event is not None
    assert (event.kind, event.event_id, event.user_id, event.chat_id, event.text) == ("text", 11, 5, 50, "Hello")
    assert event.username == "ira"


def test_document_keeps_caption_as_text():
    event = normalize_update(
        _message(document={"file_id": "F1", "file_name": "cv.pdf", "mime_type": "application/pdf"}, caption="my cv")
    )
    assert event.kind == "document"
    assert (event.file_id, event.file_name, event.mime_type, event.text) == ("F1", "cv.pdf", "application/pdf", "my cv")


def test_voice_message():
    event = normalize_update(_message(voice={"file_id": "V1", "duration": 42, "mime_type": "audio/ogg"}))
    assert event.kind == "voice"
    assert event.duration_sec == 42


def test_sticker_is_other():
    assert normalize_update(_message(sticker={"file_id": "S"})).kind == "other"


def test_callback_query():
    event = normalize_update(
        {
            "update_id": 12,
            "callback_query": {
                "id": "cb-1",
                "from": {"id": 5, "username": "ira"},
                "message": {"chat": {"id": 50}},
                "data": "role:manager",
            },
        }
    )
    assert event.kind == "callback"
    assert (event.callback_data, event.callback_query_id, event.chat_id) == ("role:manager", "cb-1", 50)


def test_unanswerable_updates_are_dropped():
    assert normalize_update({"message": {"text": "no update id"}}) is None
    assert normalize_update({"update_id": 1, "edited_message": {"text": "edit"}}) is None
    assert normalize_update({"update_id": True, "message": {}}) is None
    assert normalize_update({"update_id": 2, "callback_query": {"data": "x"}}) is None
