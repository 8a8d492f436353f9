import httpx

from chat_relay.services.preferences import DEFAULT_SYSTEM_PREFIX

from conftest import completion


def _reply(text: str):
    return lambda request: httpx.Response(200, json=completion(text))


def test_copilot_returns_json_envelope(relay):
    harness = relay(_reply("Paris."))
    history = [{"role": "user", "content": "Capital of France?"}]
    res = harness.client().post("/api/copilot", json={"messages": history})

    assert res.status_code == 200
    assert res.json() == {"content": "Paris."}
    assert res.headers["cache-control"] == "no-store"

    [payload] = harness.upstream.payloads()
    assert payload["stream"] is False
    assert payload["messages"] == [{"role": "system", "content": DEFAULT_SYSTEM_PREFIX}] + history


def test_copilot_accepts_input_fallback(relay):
    harness = relay(_reply("ok"))
    res = harness.client().post("/api/copilot", json={"input": "ping"})

    assert res.status_code == 200
    assert harness.upstream.payloads()[0]["messages"][-1] == {"role": "user", "content": "ping"}


def test_copilot_translate_directive_covers_whole_conversation(relay):
    harness = relay(_reply("ok"))
    harness.client().post(
        "/api/copilot",
        json={"input": "hola"},
        headers={"cookie": "translateLang=English"},
    )

    system = harness.upstream.payloads()[0]["messages"][0]["content"]
    assert system == "You must answer in English and consider the whole conversation in that language."


def test_copilot_checks_credentials_before_body(relay):
    harness = relay(_reply("never"), openai_api_key="")
    res = harness.client().post("/api/copilot", json={})

    assert res.status_code == 500
    assert res.json() == {"error": "Missing OPENAI_API_KEY"}
    assert harness.upstream.requests == []


def test_copilot_missing_content_is_502(relay):
    harness = relay(lambda request: httpx.Response(200, json={"choices": [{"message": {"role": "assistant"}}]}))
    res = harness.client().post("/api/copilot", json={"input": "hi"})

    assert res.status_code == 502
    assert res.json()["error"] == "Unexpected response format"


def test_copilot_upstream_status_is_502(relay):
    harness = relay(lambda request: httpx.Response(401, text='{"error":"bad key"}'))
    res = harness.client().post("/api/copilot", json={"input": "hi"})

    assert res.status_code == 502
    assert res.json() == {"error": "Upstream error", "status": 401, "body": '{"error":"bad key"}'}
