from __future__ import annotations

from fakes import MILD_ANALYSIS, FakeReasoning, FakeSpeechEngine
from healbuddy_core import AnalysisOrchestrator, TranslationAdapter
from healbuddy_core.messages import APOLOGY_TEXT

PATIENT = "asha@example.com"


def _create_profile(client, headers, **overrides):
    payload = {
        "full_name": "Asha Rao",
        "age": 34,
        "gender": "female",
        "medical_history": "Mild asthma",
        "preferred_language": "en",
        "mobile_number": None,
    }
    payload.update(overrides)
    response = client.post("/profile", headers=headers, json=payload)
    assert response.status_code == 200
    return response.json()


def _use_reasoning(backend_module, reasoning) -> None:
    backend_module.container.orchestrator = AnalysisOrchestrator(reasoning)
    backend_module.container.translation = TranslationAdapter(reasoning)


def test_requests_require_identity(client):
    assert client.get("/profile").status_code == 401
    assert client.get("/chat/transcript", headers={"X-User-Id": "bad id!"}).status_code == 400


def test_languages_table_lists_twelve_codes(client):
    response = client.get("/languages")
    assert response.status_code == 200
    codes = [language["code"] for language in response.json()["languages"]]
    assert codes[0] == "en"
    assert len(codes) == 12
    assert {"hi", "bn", "te", "ta", "mr", "gu", "kn", "ml", "pa", "or", "as"} <= set(codes)


def test_profile_roundtrip_and_language_change(client, auth_headers):
    headers = auth_headers(PATIENT)
    assert client.get("/profile", headers=headers).json() == {}

    saved = _create_profile(client, headers)
    assert saved["email"] == PATIENT

    response = client.put("/profile/language", headers=headers, json={"language": "hi"})
    assert response.status_code == 200
    assert client.get("/profile", headers=headers).json()["preferred_language"] == "hi"

    rejected = client.put("/profile/language", headers=headers, json={"language": "fr"})
    assert rejected.status_code == 400


def test_language_codes_are_normalized_with_or_without_profile(client, auth_headers):
    anonymous = auth_headers("ravi@example.com")
    client.get("/chat/transcript", headers=anonymous)
    response = client.put("/profile/language", headers=anonymous, json={"language": " HI "})
    assert response.status_code == 200
    assert response.json() == {"language": "hi"}
    assert client.get("/chat/transcript", headers=anonymous).json()["language"] == "hi"

    headers = auth_headers(PATIENT)
    _create_profile(client, headers, preferred_language="TA")
    assert client.get("/profile", headers=headers).json()["preferred_language"] == "ta"

    response = client.put("/profile/language", headers=headers, json={"language": "HI"})
    assert response.status_code == 200
    assert response.json() == {"language": "hi"}
    assert client.get("/profile", headers=headers).json()["preferred_language"] == "hi"


def test_profile_requires_email_identity(client, auth_headers):
    response = client.post(
        "/profile",
        headers=auth_headers("user-without-email"),
        json={"full_name": "Nobody", "age": 30},
    )
    assert response.status_code == 400


def test_transcript_greets_user_by_profile_name(client, auth_headers):
    headers = auth_headers(PATIENT)
    _create_profile(client, headers)

    snapshot = client.get("/chat/transcript", headers=headers).json()

    assert len(snapshot["messages"]) == 1
    assert "Asha Rao" in snapshot["messages"][0]["text"]
    assert snapshot["busy"] is False
    assert snapshot["latest_analysis"] is None


def test_empty_analyze_is_rejected_without_external_call(client, auth_headers, backend_module):
    reasoning = FakeReasoning()
    _use_reasoning(backend_module, reasoning)
    headers = auth_headers(PATIENT)

    response = client.post("/chat/analyze", headers=headers, data={"text": "   "})

    assert response.status_code == 400
    assert reasoning.analyze_calls == []
    assert len(client.get("/chat/transcript", headers=headers).json()["messages"]) == 1


def test_text_analysis_returns_result_and_updates_transcript(client, auth_headers, backend_module):
    reasoning = FakeReasoning()
    _use_reasoning(backend_module, reasoning)
    headers = auth_headers(PATIENT)
    _create_profile(client, headers)

    response = client.post("/chat/analyze", headers=headers, data={"text": "I have a mild headache"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "analyzed"
    assert body["analysis"]["possibleCauses"] == MILD_ANALYSIS["possibleCauses"]
    assert body["analysis"]["emergencyContact"] is False
    assert [message["role"] for message in body["messages"]] == ["user", "assistant"]
    assert "Asha Rao" in body["messages"][1]["text"]

    snapshot = client.get("/chat/transcript", headers=headers).json()
    assert len(snapshot["messages"]) == 3
    assert snapshot["latest_analysis"]["severity"] == "MILD"
    _, instruction = reasoning.analyze_calls[0]
    assert "Mild asthma" in instruction


def test_reasoning_failure_returns_apology(client, auth_headers, backend_module):
    _use_reasoning(backend_module, FakeReasoning(fail=True))
    headers = auth_headers(PATIENT)

    response = client.post("/chat/analyze", headers=headers, data={"text": "I feel faint"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "failed"
    assert body["analysis"] is None
    assert body["messages"][-1]["text"] == APOLOGY_TEXT


def test_upload_validation_happens_before_analysis(client, auth_headers, backend_module, monkeypatch):
    reasoning = FakeReasoning()
    _use_reasoning(backend_module, reasoning)
    headers = auth_headers(PATIENT)

    unsupported = client.post(
        "/chat/analyze",
        headers=headers,
        files={"audio": ("notes.txt", b"hello", "text/plain")},
    )
    assert unsupported.status_code == 415

    monkeypatch.setattr(backend_module, "_MAX_IMAGE_BYTES", 8)
    too_large = client.post(
        "/chat/analyze",
        headers=headers,
        files={"image": ("rash.png", b"\x89PNG" + b"\x00" * 32, "image/png")},
    )
    assert too_large.status_code == 413
    assert reasoning.analyze_calls == []


def test_voice_and_staged_image_submission(client, auth_headers, backend_module):
    reasoning = FakeReasoning()
    _use_reasoning(backend_module, reasoning)
    headers = auth_headers(PATIENT)

    staged = client.post("/chat/stage-image", headers=headers, files={"image": ("rash.jpg", b"jpeg-bytes", "image/jpeg")})
    assert staged.status_code == 200
    assert client.get("/chat/transcript", headers=headers).json()["staged_image"] is True

    response = client.post(
        "/chat/analyze",
        headers=headers,
        files={"audio": ("voice.webm", b"webm-bytes", "audio/webm")},
    )

    assert response.status_code == 200
    user_message = response.json()["messages"][0]
    assert user_message["text"] == "Voice input"
    assert user_message["image_data"].startswith("data:image/jpeg;base64,")
    submission, _ = reasoning.analyze_calls[0]
    assert submission.audio.mime_type == "audio/webm"
    assert submission.image.data == b"jpeg-bytes"
    assert client.get("/chat/transcript", headers=headers).json()["staged_image"] is False


def test_unstage_image(client, auth_headers):
    headers = auth_headers(PATIENT)
    client.post("/chat/stage-image", headers=headers, files={"image": ("rash.png", b"png-bytes", "image/png")})

    response = client.delete("/chat/stage-image", headers=headers)

    assert response.json() == {"staged_image": False}
    assert client.get("/chat/transcript", headers=headers).json()["staged_image"] is False


def test_clear_chat_leaves_one_message(client, auth_headers, backend_module):
    _use_reasoning(backend_module, FakeReasoning())
    headers = auth_headers(PATIENT)
    client.post("/chat/analyze", headers=headers, data={"text": "I have a mild headache"})

    snapshot = client.post("/chat/clear", headers=headers).json()

    assert len(snapshot["messages"]) == 1
    assert snapshot["latest_analysis"] is None
    assert snapshot["staged_image"] is False


def test_speech_audio_endpoint(client, auth_headers, backend_module):
    headers = auth_headers(PATIENT)
    assert client.get("/chat/speech", headers=headers).status_code == 204

    _use_reasoning(backend_module, FakeReasoning())
    backend_module.container.speech_engine = FakeSpeechEngine()
    session_headers = auth_headers("ravi@example.com")
    client.post("/chat/analyze", headers=session_headers, data={"text": "I have a mild headache"})

    audio = client.get("/chat/speech", headers=session_headers)
    assert audio.status_code == 200
    assert audio.headers["content-type"].startswith("audio/wav")
    assert audio.content.startswith(b"RIFF")

    assert client.post("/chat/speech/stop", headers=session_headers).json() == {"ok": True}
    assert client.get("/chat/speech", headers=session_headers).status_code == 204


def test_sessions_are_isolated_by_session_key(client, auth_headers, backend_module):
    _use_reasoning(backend_module, FakeReasoning())
    headers = auth_headers(PATIENT)
    client.post("/chat/analyze", headers=headers, data={"text": "cough", "session_key": "tab-1"})

    first = client.get("/chat/transcript", headers=headers, params={"session_key": "tab-1"}).json()
    second = client.get("/chat/transcript", headers=headers, params={"session_key": "tab-2"}).json()

    assert len(first["messages"]) == 3
    assert len(second["messages"]) == 1


def test_ending_a_session_drops_its_state(client, auth_headers, backend_module):
    _use_reasoning(backend_module, FakeReasoning())
    headers = auth_headers(PATIENT)
    client.post("/chat/analyze", headers=headers, data={"text": "cough", "session_key": "tab-1"})
    client.post("/chat/stage-image", headers=headers, files={"image": ("rash.png", b"png-bytes", "image/png")})

    ended = client.delete("/chat/session", headers=headers, params={"session_key": "tab-1"})
    assert ended.json() == {"ended": True}
    assert client.delete("/chat/session", headers=headers, params={"session_key": "tab-1"}).json() == {"ended": False}
    assert client.delete("/chat/session", headers=headers).json() == {"ended": True}

    fresh = client.get("/chat/transcript", headers=headers, params={"session_key": "tab-1"}).json()
    assert len(fresh["messages"]) == 1
    assert client.get("/chat/transcript", headers=headers).json()["staged_image"] is False


def test_sessions_per_user_are_capped(client, auth_headers, backend_module):
    backend_module.container.sessions.max_sessions_per_user = 2
    headers = auth_headers(PATIENT)
    for key in ("tab-1", "tab-2", "tab-3"):
        client.get("/chat/transcript", headers=headers, params={"session_key": key})
    client.get("/chat/transcript", headers=auth_headers("ravi@example.com"))

    live = {session.session_key for session in backend_module.container.sessions.sessions_for_user(PATIENT)}

    assert live == {"tab-2", "tab-3"}
    assert len(backend_module.container.sessions.sessions_for_user("ravi@example.com")) == 1


def test_translate_endpoints(client, auth_headers, backend_module):
    reasoning = FakeReasoning(reply_for=lambda instruction, text: "hi" if "Detect" in instruction else f"<{text}>")
    _use_reasoning(backend_module, reasoning)
    headers = auth_headers(PATIENT)

    same = client.post("/translate", headers=headers, json={"text": "Rest", "source": "en", "target": "en"})
    assert same.json()["text"] == "Rest"
    assert reasoning.text_calls == []

    translated = client.post("/translate", headers=headers, json={"text": "Rest", "source": "en", "target": "hi"})
    assert translated.json()["text"] == "<Rest>"

    batch = client.post(
        "/translate/batch",
        headers=headers,
        json={"items": [{"id": "a", "text": "one"}, {"id": "b", "text": "two"}], "source": "en", "target": "ml"},
    )
    assert batch.json()["translations"] == {"a": "<one>", "b": "<two>"}

    detected = client.post("/translate/detect", headers=headers, json={"text": "मुझे बुखार है"})
    assert detected.json() == {"language": "hi"}


def test_translate_endpoints_fail_open_on_unexpected_errors(client, auth_headers, backend_module):
    def reply_for(instruction: str, text: str) -> str:
        raise AttributeError("'list' object has no attribute 'get'")

    _use_reasoning(backend_module, FakeReasoning(reply_for=reply_for))
    headers = auth_headers(PATIENT)

    translated = client.post("/translate", headers=headers, json={"text": "Drink water", "source": "en", "target": "hi"})
    detected = client.post("/translate/detect", headers=headers, json={"text": "namaste"})

    assert translated.status_code == 200
    assert translated.json()["text"] == "Drink water"
    assert detected.json() == {"language": "en"}


def test_doctor_chat_relay_translates_and_reports_speech(client, auth_headers, backend_module):
    _use_reasoning(backend_module, FakeReasoning(reply_for=lambda instruction, text: "Take this twice a day"))
    headers = auth_headers(PATIENT)

    response = client.post(
        "/doctor-chat/relay",
        headers=headers,
        json={"text": "दिन में दो बार लें", "source": "hi", "target": "en"},
    )

    assert response.status_code == 200
    assert response.json() == {
        "original": "दिन में दो बार लें",
        "translated": "Take this twice a day",
        "spoken": False,
    }


def test_appointment_lifecycle_and_notifications(client, auth_headers):
    headers = auth_headers(PATIENT)
    _create_profile(client, headers)

    booked = client.post(
        "/appointments",
        headers=headers,
        json={
            "doctor_id": "doc2",
            "doctor_name": "Dr. Rajesh Kumar",
            "date": "2026-03-02",
            "time": "14:30",
            "meeting_link": "https://meet.google.com/abc-defg-hij",
        },
    )
    assert booked.status_code == 200
    body = booked.json()
    appointment_id = body["appointment"]["id"]
    assert body["appointment"]["status"] == "scheduled"
    assert body["delivery"] == {"email": False, "sms": None}

    listed = client.get("/appointments", headers=headers).json()["appointments"]
    assert [item["id"] for item in listed] == [appointment_id]

    other = client.post(f"/appointments/{appointment_id}/cancel", headers=auth_headers("ravi@example.com"))
    assert other.status_code == 400

    reminder = client.post(f"/appointments/{appointment_id}/reminder", headers=headers)
    assert reminder.status_code == 200
    assert reminder.json()["notification"]["type"] == "reminder"

    completed = client.post(f"/appointments/{appointment_id}/complete", headers=headers)
    assert completed.json()["status"] == "completed"
    assert client.post(f"/appointments/{appointment_id}/cancel", headers=headers).status_code == 409
    assert client.post(f"/appointments/{appointment_id}/reminder", headers=headers).status_code == 409
    assert client.post("/appointments/apt_missing/complete", headers=headers).status_code == 404

    notifications = client.get("/notifications", headers=headers).json()
    assert notifications["unread_count"] == 2
    assert {item["type"] for item in notifications["notifications"]} == {"appointment", "reminder"}


def test_prescription_issue_links_appointment(client, auth_headers):
    headers = auth_headers(PATIENT)
    _create_profile(client, headers)
    appointment_id = client.post(
        "/appointments",
        headers=headers,
        json={"doctor_id": "doc1", "doctor_name": "Dr. Priya Sharma", "date": "2026-03-02", "time": "10:00"},
    ).json()["appointment"]["id"]

    payload = {
        "appointment_id": appointment_id,
        "doctor_id": "doc1",
        "doctor_name": "Dr. Priya Sharma",
        "diagnosis": "Common Cold with mild fever",
        "medications": [
            {"name": "Vitamin C", "dosage": "1000mg", "frequency": "Once daily", "duration": "7 days"},
        ],
        "instructions": "Rest adequately.",
    }
    doctor_headers = auth_headers("dr.priya@example.com")
    issued = client.post("/prescriptions", headers=doctor_headers, json=payload)

    assert issued.status_code == 200
    prescription = issued.json()["prescription"]
    assert prescription["patient_id"] == PATIENT
    assert prescription["patient_name"] == "Asha Rao"
    assert client.post("/prescriptions", headers=doctor_headers, json=payload).status_code == 400

    mine = client.get("/prescriptions", headers=headers).json()["prescriptions"]
    assert [item["id"] for item in mine] == [prescription["id"]]
    appointment = client.get("/appointments", headers=headers).json()["appointments"][0]
    assert appointment["prescription_id"] == prescription["id"]


def test_notifications_mark_read(client, auth_headers):
    headers = auth_headers(PATIENT)
    for time in ("09:00", "11:00"):
        client.post(
            "/appointments",
            headers=headers,
            json={"doctor_id": "doc1", "doctor_name": "Dr. Priya Sharma", "date": "2026-03-02", "time": time},
        )
    notifications = client.get("/notifications", headers=headers).json()["notifications"]

    marked = client.post(f"/notifications/{notifications[0]['id']}/read", headers=headers)
    assert marked.json()["read"] is True
    assert client.post(f"/notifications/{notifications[0]['id']}/read", headers=auth_headers("ravi@example.com")).status_code == 400
    assert client.get("/notifications", headers=headers, params={"unread_only": True}).json()["unread_count"] == 1

    assert client.post("/notifications/read-all", headers=headers).json() == {"updated": 1}
    assert client.get("/notifications", headers=headers).json()["unread_count"] == 0


def test_phone_appointment_endpoints(client, auth_headers):
    headers = auth_headers(PATIENT)
    created = client.post(
        "/phone-appointments",
        headers=headers,
        json={
            "patient_name": "Asha Rao",
            "patient_phone": "14152311749",
            "appointment_type": "General consultation",
            "preferred_date": "2026-03-03",
            "preferred_time": "10:00",
            "reason": "Fever",
        },
    )
    assert created.status_code == 200
    record = created.json()
    assert record["patient_phone_display"] == "+1 (415) 231-1749"

    updated = client.patch(f"/phone-appointments/{record['id']}", headers=headers, json={"status": "confirmed"})
    assert updated.json()["status"] == "confirmed"
    invalid = client.patch(f"/phone-appointments/{record['id']}", headers=headers, json={"status": "done"})
    assert invalid.status_code == 400
    assert client.patch("/phone-appointments/phone_missing", headers=headers, json={"status": "confirmed"}).status_code == 404

    assert len(client.get("/phone-appointments", headers=headers).json()["appointments"]) == 1
    assert client.delete(f"/phone-appointments/{record['id']}", headers=headers).json() == {"ok": True}
    assert client.delete(f"/phone-appointments/{record['id']}", headers=headers).status_code == 404


def test_voice_agent_config(client):
    body = client.get("/voice-agent").json()
    assert body["phone_number"].startswith("+1 (")
    assert "web_calls_enabled" in body


def test_sample_data_seeding(client, auth_headers):
    headers = auth_headers(PATIENT)
    _create_profile(client, headers)

    response = client.post("/demo/sample-data", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["prescription"]["diagnosis"] == "Common Cold with mild fever"
    assert [med["name"] for med in body["prescription"]["medications"]] == [
        "Paracetamol 500mg",
        "Vitamin C",
        "Cetirizine 10mg",
    ]
    statuses = {item["doctor_name"]: item["status"] for item in body["appointments"]}
    assert statuses == {"Dr. Rajesh Kumar": "scheduled", "Dr. Priya Sharma": "completed"}
    assert body["delivery"]["email"] is False

    notifications = client.get("/notifications", headers=headers).json()
    assert notifications["unread_count"] == 3
