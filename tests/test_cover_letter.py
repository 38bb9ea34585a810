"""Tests for per-job cover letters and how the form filler uses them."""
from __future__ import annotations

from dataclasses import replace

import httpx
import openai

from conftest import AS_OF, FakeDriver, make_job
from jobpilot import llm as llm_module
from jobpilot.cover_letter import CoverLetterWriter, fallback_letter
from jobpilot.form_filler import ProfileFormFiller
from jobpilot.models import FormField

REQUEST = httpx.Request("POST", "https://api.groq.com/openai/v1/chat/completions")


def test_template_without_key(profile):
    letter = CoverLetterWriter(api_key="")(make_job(company="Initech"), profile)
    assert letter == fallback_letter(make_job(company="Initech"), profile)
    assert "Software Engineer position at Initech" in letter
    assert "Senior Software Engineer at Acme" in letter
    assert "TypeScript" in letter
    assert letter.endswith("Best regards,\nJane Doe")


def test_stored_letter_without_key(profile):
    p = replace(profile, cover_letter="My own letter.")
    assert CoverLetterWriter(api_key="")(make_job(), p) == "My own letter."


def test_generated_letter(monkeypatch, profile):
    calls = []

    def fake_chat(api_key, model, content, *, max_tokens, temperature=None):
        calls.append((api_key, model, content, max_tokens))
        return "Dear Initech team, ..."

    monkeypatch.setattr(llm_module, "chat", fake_chat)
    letter = CoverLetterWriter(api_key="k", model="m")(make_job(company="Initech"), profile)

    assert letter == "Dear Initech team, ..."
    api_key, model, prompt, max_tokens = calls[0]
    assert (api_key, model, max_tokens) == ("k", "m", 400)
    assert "Company: Initech" in prompt
    assert "TypeScript and Node.js services" in prompt
    assert "Current role: Senior Software Engineer at Acme" in prompt


def test_transient_failure_is_retried(monkeypatch, profile):
    replies = [openai.APIConnectionError(request=REQUEST), "Generated"]
    slept = []

    def flaky_chat(*args, **kwargs):
        reply = replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr(llm_module, "chat", flaky_chat)
    assert CoverLetterWriter(api_key="k", sleep=slept.append)(make_job(), profile) == "Generated"
    assert slept == [2.0]


def test_rejected_key_falls_back_without_retry(monkeypatch, profile):
    calls = []
    slept = []

    def rejected(*args, **kwargs):
        calls.append(1)
        raise openai.AuthenticationError(
            "invalid api key", response=httpx.Response(401, request=REQUEST), body=None
        )

    monkeypatch.setattr(llm_module, "chat", rejected)
    p = replace(profile, cover_letter="Stored letter")
    assert CoverLetterWriter(api_key="bad", sleep=slept.append)(make_job(), p) == "Stored letter"
    assert calls == [1]
    assert slept == []


class TestFillerIntegration:
    def test_one_letter_per_job(self, profile):
        written = []

        def writer(job, p):
            written.append(job.id)
            return f"Letter for {job.company}"

        filler = ProfileFormFiller(as_of=AS_OF, cover_letters=writer)
        field = FormField("#cl", "textarea", "Cover letter")
        driver = FakeDriver()
        job = make_job("a", company="Initech")

        filler.fill(driver, [field], profile, job)
        filler.fill(driver, [field], profile, job)
        filler.fill(driver, [field], profile, make_job("b", company="Hooli"))

        assert written == ["a", "b"]
        assert [v for _, v, _ in driver.fills] == [
            "Letter for Initech", "Letter for Initech", "Letter for Hooli",
        ]

    def test_writer_not_called_without_cover_letter_field(self, profile):
        written = []
        filler = ProfileFormFiller(as_of=AS_OF, cover_letters=lambda job, p: written.append(job.id) or "x")
        filler.fill(FakeDriver(), [FormField("#email", "email", "Email", profile_mapping="email")],
                    profile, make_job())
        assert written == []

    def test_without_writer_uses_stored_letter(self, profile):
        driver = FakeDriver()
        p = replace(profile, cover_letter="Stored letter")
        ProfileFormFiller(as_of=AS_OF).fill(driver, [FormField("#cl", "textarea", "Cover Letter")],
                                            p, make_job())
        assert driver.fills == [("#cl", "Stored letter", "textarea")]
