"""Tests for job/profile scoring and ranking."""
from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta

import pytest

from conftest import AS_OF, EPOCH, make_job
from jobpilot.matcher import (
    MatchEngine,
    extract_required_years,
    normalize_skill,
    parse_date,
    total_experience_years,
)
from jobpilot.models import (
    CandidateProfile,
    ExperiencePeriod,
    FitCategory,
    Preferences,
    Skill,
)


@pytest.fixture
def engine() -> MatchEngine:
    return MatchEngine(as_of=AS_OF)


class TestYearsExtraction:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("5+ years of Python", 5),
            ("3-5 years of experience", 5),
            ("3–5 yrs in backend", 5),
            ("2 to 4 years of experience", 4),
            ("at least 7 years", 7),
            ("No experience needed", None),
            ("", None),
        ],
    )
    def test_patterns(self, text, expected):
        assert extract_required_years(text) == expected

    def test_plus_pattern_wins_over_range(self):
        assert extract_required_years("3-5 years of Go, 8+ years overall") == 8


class TestDates:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("2020-03-15", date(2020, 3, 15)),
            ("2020-03", date(2020, 3, 1)),
            ("03/2020", date(2020, 3, 1)),
            ("2015", date(2015, 1, 1)),
            ("March 2020", date(2020, 3, 1)),
            ("Jan 2016", date(2016, 1, 1)),
        ],
    )
    def test_parse_date(self, raw, expected):
        assert parse_date(raw) == expected

    @pytest.mark.parametrize("raw", ["present", "Current", "", None, "someday"])
    def test_open_or_unknown(self, raw):
        assert parse_date(raw) is None

    def test_overlapping_periods_count_once(self):
        periods = [
            ExperiencePeriod("A", "Dev", "2018-01", "2020-01"),
            ExperiencePeriod("B", "Dev", "2019-01", "2021-01"),
        ]
        assert total_experience_years(periods, AS_OF) == 3.0

    def test_open_period_runs_to_as_of(self):
        periods = [ExperiencePeriod("A", "Dev", "2022-06", None)]
        assert total_experience_years(periods, date(2024, 6, 1)) == 2.0

    def test_unreadable_start_is_ignored(self):
        assert total_experience_years([ExperiencePeriod("A", "Dev", "a while ago")], AS_OF) == 0.0


class TestSkills:
    def test_aliases(self):
        assert normalize_skill("JS") == "javascript"
        assert normalize_skill("  ReactJS ") == "react"
        assert normalize_skill("k8s") == "kubernetes"

    def test_zero_skill_overlap_scores_zero(self, engine, profile):
        job = make_job(required_skills=("cobol", "fortran"), preferred_skills=())
        result = engine.score(job, profile)
        assert result.skill_score == 0.0
        assert result.missing_skills == ("cobol", "fortran")

    def test_preferred_skills_weigh_half(self, engine, profile):
        job = make_job(required_skills=("typescript",), preferred_skills=("go",))
        result = engine.score(job, profile)
        # 1.0 of 1.5 total weight
        assert result.skill_score == pytest.approx(66.67)

    def test_alias_matches_profile_skill(self, engine, profile):
        job = make_job(required_skills=("TS", "nodejs"), preferred_skills=())
        assert engine.score(job, profile).skill_score == 100.0

    def test_experience_skills_count(self, engine, profile):
        job = make_job(required_skills=("postgres",), preferred_skills=())
        assert engine.score(job, profile).skill_score == 100.0

    def test_no_skills_listed_scores_zero(self, engine, profile):
        job = make_job(required_skills=(), preferred_skills=())
        assert engine.score(job, profile).skill_score == 0.0


class TestComponents:
    def test_strong_match_is_good_fit(self, engine, profile):
        result = engine.score(make_job(), profile)
        assert result.overall_score > 70
        assert result.fit_category in (FitCategory.EXCELLENT, FitCategory.GOOD)
        assert result.required_years == 5
        assert result.candidate_years == 6.4

    def test_experience_tiers(self, engine, profile):
        junior = replace(profile, experience=(ExperiencePeriod("X", "Analyst", "2021-06"),))
        job = make_job(title="Data Analyst", description="8+ years required")
        # 3 years against 8 -> 30, plus title boost
        assert engine.score(job, junior).experience_score == 40.0

    def test_no_stated_requirement(self, engine, profile):
        job = make_job(title="Gardener", description="Love plants.")
        result = engine.score(job, profile)
        assert result.required_years is None
        assert result.experience_score == 80.0

    @pytest.mark.parametrize(
        "job_kwargs, prefs, expected",
        [
            ({"location": "San Francisco, CA"}, {}, ("exact", 100.0)),
            ({"location": "Anywhere", "remote": True}, {}, ("remote", 90.0)),
            ({"location": "Tokyo"}, {"willing_to_relocate": True}, ("willing-to-relocate", 60.0)),
            ({"location": "Tokyo"}, {}, ("no-match", 0.0)),
            ({"location": "Remote"}, {"remote_ok": False}, ("no-match", 0.0)),
        ],
    )
    def test_location_tiers(self, engine, profile, job_kwargs, prefs, expected):
        p = replace(profile, preferences=replace(profile.preferences, **prefs))
        result = engine.score(make_job(**job_kwargs), p)
        assert (result.location_match, result.location_score) == expected

    def test_salary_absent_is_renormalized(self, engine, profile):
        result = engine.score(make_job(description="Python. 20 years."), profile)
        assert result.salary_score is None
        expected = (result.skill_score * 0.4 + result.experience_score * 0.3
                    + result.location_score * 0.15) / 0.85
        assert result.overall_score == pytest.approx(expected, abs=0.01)

    def test_salary_tiers(self, engine, profile):
        assert engine.score(make_job(salary_min=120000), profile).salary_score == 100.0
        assert engine.score(make_job(salary_min=92000), profile).salary_score == 80.0
        assert engine.score(make_job(salary_min=50000), profile).salary_score == 30.0

    def test_score_is_bounded(self, engine):
        empty = CandidateProfile(id="x", name="Nobody")
        for job in (make_job(), make_job(required_skills=(), description="")):
            for p in (empty, replace(empty, skills=(Skill("typescript"),))):
                r = engine.score(job, p)
                for value in (r.overall_score, r.skill_score, r.experience_score, r.location_score):
                    assert 0 <= value <= 100

    def test_deterministic(self, profile):
        job = make_job(salary_min=95000)
        a = MatchEngine(as_of=AS_OF).score(job, profile)
        b = MatchEngine(as_of=AS_OF).score(job, profile)
        assert a == b

    def test_custom_weights(self, profile):
        engine = MatchEngine({"skills": 1.0, "experience": 0, "location": 0, "salary": 0}, as_of=AS_OF)
        job = make_job(required_skills=("typescript", "rust"), preferred_skills=())
        assert engine.score(job, profile).overall_score == 50.0

    @pytest.mark.parametrize("weights", [{"charisma": 0.5}, {"skills": -1}])
    def test_bad_weights(self, weights):
        with pytest.raises(ValueError):
            MatchEngine(weights)


class TestRank:
    def test_sorted_and_filtered(self, engine, profile):
        strong = make_job("strong")
        weak = make_job("weak", title="Barista", location="Tokyo",
                        required_skills=("latte art",), preferred_skills=(), description="10+ years")
        ranked = engine.rank([weak, strong], profile)
        assert [s.job.id for s in ranked] == ["strong", "weak"]
        assert ranked[0].job.match_score == ranked[0].score

        kept = engine.rank([weak, strong], profile, min_score=50)
        assert [s.job.id for s in kept] == ["strong"]

    def test_ties_prefer_recent(self, engine, profile):
        older = make_job("older", discovered_at=EPOCH)
        newer = make_job("newer", discovered_at=EPOCH + timedelta(days=3))
        ranked = engine.rank([older, newer], profile)
        assert ranked[0].score == ranked[1].score
        assert [s.job.id for s in ranked] == ["newer", "older"]

    def test_limit(self, engine, profile):
        jobs = [make_job(f"j{i}", discovered_at=EPOCH + timedelta(hours=i)) for i in range(5)]
        assert len(engine.rank(jobs, profile, limit=2)) == 2

    def test_original_jobs_untouched(self, engine, profile):
        job = make_job()
        engine.rank([job], profile)
        assert job.match_score is None


def test_target_role_boosts_experience(engine):
    p = CandidateProfile(
        id="p", name="P",
        experience=(ExperiencePeriod("A", "Cook", "2014-01", "2024-01"),),
        preferences=Preferences(target_roles=("Platform Engineer",)),
    )
    job = make_job(title="Platform Engineer", description="12+ years")
    # 10 years against 12 -> 80, plus the title boost
    assert engine.score(job, p).experience_score == 90.0


def test_full_stack_profile_is_strong_fit(engine, profile):
    job = make_job(required_skills=("typescript", "node.js", "react"), preferred_skills=())
    result = engine.score(job, profile)
    assert result.skill_score > 70
    assert result.fit_category in (FitCategory.EXCELLENT, FitCategory.GOOD)


def test_rank_output_is_non_increasing(engine, profile):
    jobs = [
        make_job("a", required_skills=("typescript", "rust")),
        make_job("b", location="Tokyo"),
        make_job("c"),
        make_job("d", required_skills=("cobol",), description="15+ years"),
    ]
    scores = [s.score for s in engine.rank(jobs, profile)]
    assert scores == sorted(scores, reverse=True)
