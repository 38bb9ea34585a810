"""Tests for filling form fields from the candidate profile."""
from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import AS_OF, FakeDriver, make_job
from jobpilot.errors import BrowserActionError, RequiredFieldMissingError
from jobpilot.form_filler import ProfileFormFiller, profile_values
from jobpilot.models import ExperiencePeriod, FormField


@pytest.fixture
def form_filler() -> ProfileFormFiller:
    return ProfileFormFiller(as_of=AS_OF)


def test_profile_values(profile):
    values = profile_values(profile, AS_OF)
    assert values["first_name"] == "Jane"
    assert values["last_name"] == "Doe"
    assert values["years_experience"] == "6"
    assert values["current_title"] == "Senior Software Engineer"
    assert values["current_company"] == "Acme"


def test_current_role_prefers_open_period(profile):
    p = replace(profile, experience=(
        ExperiencePeriod("Old Co", "Junior Dev", "2015-01", "2017-12"),
        ExperiencePeriod("New Co", "Staff Engineer", "2018-01", None),
        ExperiencePeriod("Side Gig", "Consultant", "2020-01", "2021-01"),
    ))
    assert profile_values(p, AS_OF)["current_company"] == "New Co"


def test_mapping_and_label_hints(form_filler, profile):
    driver = FakeDriver()
    fields = [
        FormField("#fn", "text", "Given name", required=True, profile_mapping="firstName"),
        FormField("#mail", "email", "E-mail address", required=True),
        FormField("#tel", "tel", "Mobile number"),
        FormField("#cv", "file", "Upload your CV", required=True),
    ]
    result = form_filler.fill(driver, fields, profile, make_job())
    assert result.fields_filled == 4
    assert driver.fills == [
        ("#fn", "Jane", "text"),
        ("#mail", "jane@example.com", "email"),
        ("#tel", "+1 555 0100", "tel"),
        ("#cv", "/tmp/jane_resume.pdf", "file"),
    ]


def test_answers_take_precedence(form_filler, profile):
    p = replace(profile, answers={"sponsorship": "No", "notice period": "2 weeks"})
    driver = FakeDriver()
    fields = [
        FormField("#visa", "select", "Do you require visa sponsorship?", required=True),
        FormField("#notice", "text", "Notice period"),
    ]
    form_filler.fill(driver, fields, p, make_job())
    assert [v for _, v, _ in driver.fills] == ["No", "2 weeks"]


def test_select_option_is_matched_case_insensitively(form_filler, profile):
    p = replace(profile, answers={"authorized": "yes"})
    driver = FakeDriver()
    field = FormField("#auth", "select", "Are you authorized to work?", options=("Yes", "No"))
    form_filler.fill(driver, [field], p, make_job())
    assert driver.fills == [("#auth", "Yes", "select")]


def test_answer_without_matching_option_is_kept(form_filler, profile):
    p = replace(profile, answers={"notice period": "Two weeks"})
    driver = FakeDriver()
    field = FormField("#notice", "select", "Notice period", options=("Immediately", "1 month"))
    form_filler.fill(driver, [field], p, make_job())
    assert driver.fills == [("#notice", "Two weeks", "select")]


def test_missing_required_value_is_terminal(form_filler, profile):
    field = FormField("#site", "url", "Portfolio URL", required=True)
    with pytest.raises(RequiredFieldMissingError) as info:
        form_filler.fill(FakeDriver(), [field], profile, make_job())
    assert info.value.field_label == "Portfolio URL"
    assert info.value.status == "failed"


def test_missing_optional_value_is_skipped(form_filler, profile):
    driver = FakeDriver()
    fields = [
        FormField("#site", "url", "Portfolio URL"),
        FormField("#why", "textarea", "Why do you want to work here?"),
        FormField("#email", "email", "Email", required=True),
    ]
    result = form_filler.fill(driver, fields, profile, make_job())
    assert result.fields_filled == 1
    assert result.fields_skipped == 2


def test_optional_fill_error_is_recorded(form_filler, profile):
    driver = FakeDriver()
    driver.fill_errors["#tel"] = BrowserActionError("element detached")
    fields = [FormField("#tel", "tel", "Phone"), FormField("#email", "email", "Email", required=True)]
    result = form_filler.fill(driver, fields, profile, make_job())
    assert result.fields_filled == 1
    assert result.errors == ["Phone: element detached"]


def test_required_fill_error_propagates(form_filler, profile):
    driver = FakeDriver()
    driver.fill_errors["#email"] = BrowserActionError("element detached")
    with pytest.raises(BrowserActionError):
        form_filler.fill(driver, [FormField("#email", "email", "Email", required=True)], profile, make_job())
