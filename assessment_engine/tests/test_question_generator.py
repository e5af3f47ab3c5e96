"""
Tests for template-based question generation.
"""

import random
import re

import pytest

from assessment_engine.common.error_handling import (
    ConfigurationError, TemplateVariableError, UnknownSubjectError, ValidationError
)
from assessment_engine.assessments.evaluation import RuleBasedEvaluator
from assessment_engine.assessments.models import DifficultyTier, QuestionType
from assessment_engine.assessments.question_generator import QuestionGenerator, perturb_numbers
from assessment_engine.assessments.templates import (
    POINTS_BY_TIER, QuestionTemplate, TemplateLibrary, VariableKind, estimated_time_for,
    extract_variables, points_for
)

UNRESOLVED = re.compile(r"\{[^{}]+\}")


@pytest.fixture
def generator():
    return QuestionGenerator(rng=random.Random(7))


class TestDerivations:
    def test_points_follow_tier(self):
        assert {tier.value: points for tier, points in POINTS_BY_TIER.items()} == {
            "beginner": 1, "intermediate": 2, "advanced": 3, "expert": 4
        }

    def test_estimated_time_scales_by_type(self):
        assert estimated_time_for(DifficultyTier.BEGINNER, QuestionType.MULTIPLE_CHOICE) == 60_000
        assert estimated_time_for(DifficultyTier.INTERMEDIATE, QuestionType.TRUE_FALSE) == 60_000
        assert estimated_time_for(DifficultyTier.ADVANCED, QuestionType.SHORT_ANSWER) == 450_000
        assert estimated_time_for(DifficultyTier.EXPERT, QuestionType.ESSAY) == 1_800_000
        assert estimated_time_for(DifficultyTier.BEGINNER, QuestionType.FILL_BLANK) == 72_000

    def test_missing_table_entry_is_configuration_error(self, monkeypatch):
        from assessment_engine.assessments import templates
        monkeypatch.delitem(templates.POINTS_BY_TIER, DifficultyTier.EXPERT)
        with pytest.raises(ConfigurationError):
            points_for(DifficultyTier.EXPERT)

    def test_extract_variables(self):
        assert extract_variables("Solve {equation} then {number} times") == ["equation", "number"]


class TestGenerateQuestions:
    @pytest.mark.parametrize("subject", ["mathematics", "science", "language"])
    @pytest.mark.parametrize("tier", list(DifficultyTier))
    def test_generated_questions_are_complete(self, generator, subject, tier):
        questions = generator.generate_questions(subject, tier, 12)

        assert len(questions) == 12
        for question in questions:
            assert not UNRESOLVED.search(question.content)
            assert question.difficulty == tier
            assert question.points == points_for(tier)
            assert question.estimated_time_ms == estimated_time_for(tier, question.type)
            assert question.subject == subject
            question.validate()

    def test_type_comes_from_template(self, generator):
        library = generator.library
        for question in generator.generate_questions("mathematics", "intermediate", 20):
            assert library.get(question.template_id).question_type == question.type

    def test_multiple_choice_has_four_distinct_options(self, generator):
        questions = generator.generate_questions(
            "mathematics", DifficultyTier.ADVANCED, 10, [QuestionType.MULTIPLE_CHOICE]
        )
        for question in questions:
            texts = [option.text for option in question.options]
            assert len(texts) == 4
            assert len(set(texts)) == 4
            assert question.correct_answer in question.option_ids

    def test_fill_blank_accepts_several_forms(self, generator):
        questions = generator.generate_questions("mathematics", "beginner", 5, ["fill_blank"])
        for question in questions:
            assert question.type == QuestionType.FILL_BLANK
            assert isinstance(question.correct_answer, list)
            assert question.correct_answer

    @pytest.mark.parametrize("tier", [DifficultyTier.INTERMEDIATE, DifficultyTier.ADVANCED])
    def test_algebra_answers_match_the_stated_format(self, generator, tier):
        library = generator.library
        solve = generator.build_question(library.get("algebra_solve"), tier)
        assert "a comma and a space between values" in solve.content
        assert re.fullmatch(r"-?\d+(, -?\d+)+", solve.correct_answer)
        assert RuleBasedEvaluator().evaluate(solve, solve.correct_answer)

        choice = generator.build_question(library.get("algebra_choice"), tier)
        assert choice.content.startswith("Which option lists every solution of")
        correct = next(o for o in choice.options if o.id == choice.correct_answer)
        assert re.fullmatch(r"-?\d+(, -?\d+)+", correct.text)

    def test_essay_min_words_scale_with_tier(self, generator):
        beginner = generator.generate_questions("language", "beginner", 3, ["essay"])
        expert = generator.generate_questions("language", "expert", 3, ["essay"])
        assert all(q.min_words == 50 for q in beginner)
        assert all(q.min_words == 250 for q in expert)

    def test_same_seed_same_questions(self):
        first = QuestionGenerator(rng=random.Random(99)).generate_questions("science", "advanced", 5)
        second = QuestionGenerator(rng=random.Random(99)).generate_questions("science", "advanced", 5)
        assert [q.content for q in first] == [q.content for q in second]

    def test_unknown_subject(self, generator):
        with pytest.raises(UnknownSubjectError) as exc_info:
            generator.generate_questions("astrology", "beginner", 1)
        assert isinstance(exc_info.value, ValidationError)

    def test_invalid_count(self, generator):
        with pytest.raises(ValidationError):
            generator.generate_questions("mathematics", "beginner", 0)

    def test_invalid_difficulty(self, generator):
        with pytest.raises(ValidationError):
            generator.generate_questions("mathematics", "impossible", 1)

    def test_type_filter_without_match(self, generator):
        # Language has no multiple-choice templates
        with pytest.raises(ValidationError):
            generator.generate_questions("language", "beginner", 1, ["multiple_choice"])


class TestTemplateVariables:
    def _library(self, text, question_type=QuestionType.SHORT_ANSWER, answer_variable=VariableKind.NUMBER):
        return TemplateLibrary([QuestionTemplate(
            id="custom", subject="custom", topic="custom", text=text,
            question_type=question_type, answer_variable=answer_variable,
        )])

    def test_unknown_variable(self):
        generator = QuestionGenerator(self._library("What is {mystery}?"), random.Random(1))
        with pytest.raises(TemplateVariableError):
            generator.generate_questions("custom", "beginner", 1)

    def test_repeated_variable_gets_one_value(self):
        library = self._library("Explain why {number} equals {number}.", QuestionType.ESSAY)
        generator = QuestionGenerator(library, random.Random(1))
        question = generator.generate_questions("custom", "beginner", 1)[0]
        first, second = re.findall(r"\d+", question.content)
        assert first == second

    def test_claim_depends_on_equation(self):
        generator = QuestionGenerator(rng=random.Random(3))
        values = generator.resolve_variables("{claim}", DifficultyTier.INTERMEDIATE)
        assert VariableKind.EQUATION in values
        assert values[VariableKind.CLAIM].solution in ("true", "false")


class TestPerturbNumbers:
    def test_changes_every_number(self):
        rng = random.Random(5)
        for _ in range(50):
            assert perturb_numbers("x = 3, x = 7", rng) != "x = 3, x = 7"

    def test_keeps_decimal_places(self):
        rng = random.Random(5)
        perturbed = perturb_numbers("12.57", rng)
        assert re.fullmatch(r"-?\d+\.\d{2}", perturbed)

    def test_keeps_positive_values_positive(self):
        rng = random.Random(11)
        for _ in range(100):
            assert float(perturb_numbers("1", rng)) > 0
