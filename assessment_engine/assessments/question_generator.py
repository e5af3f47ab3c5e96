"""
Question Generation Module

This module turns templates into complete questions: it picks templates for
a subject, resolves their variables at the requested tier and derives the
answer key, points and expected time of each question.
"""

import random
import re
from typing import Dict, List, Optional, Sequence, Union

from assessment_engine.common.error_handling import (
    ConfigurationError, TemplateVariableError, UnknownSubjectError, ValidationError
)
from assessment_engine.common.logger import app_logger
from assessment_engine.assessments.models import (
    AnswerOption, DifficultyTier, Question, QuestionType
)
from assessment_engine.assessments.templates import (
    VARIABLE_GENERATORS, VARIABLE_PATTERN, QuestionTemplate, TemplateLibrary,
    VariableKind, VariableValue, essay_min_words_for, estimated_time_for, points_for
)

# Module logger
logger = app_logger.getChild("question_generator")

NUMBER_PATTERN = re.compile(r"-?\d+(?:\.\d+)?")

OPTION_COUNT = 4
MAX_DISTRACTOR_ATTEMPTS = 50

TRUE_FALSE_OPTIONS = [
    AnswerOption(id="true", text="True", value=True),
    AnswerOption(id="false", text="False", value=False),
]


def perturb_numbers(solution: str, rng: random.Random) -> str:
    """
    Produce a plausible wrong answer by shifting every number in a solution.

    Decimal places are preserved; every number moves by a non-zero amount, so
    the result always differs from the solution.
    """
    def replace(match):
        token = match.group(0)
        decimals = len(token.split(".")[1]) if "." in token else 0
        value = float(token)
        delta = rng.randint(1, max(5, int(abs(value) * 0.2)))
        # Positive quantities stay positive
        if rng.random() < 0.5 and not (value > 0 and value - delta <= 0):
            delta = -delta
        return f"{value + delta:.{decimals}f}"

    return NUMBER_PATTERN.sub(replace, solution)


class QuestionGenerator:
    """
    Generates questions from the template library.

    The question type of each generated question is the type declared by the
    template it was built from.
    """

    def __init__(self, library: Optional[TemplateLibrary] = None, rng: Optional[random.Random] = None):
        """
        Initialize the generator.

        Args:
            library: Template library; the built-in templates by default
            rng: Random source, injectable for reproducible output
        """
        self.library = library or TemplateLibrary()
        self.rng = rng or random.Random()

    def generate_questions(
        self,
        subject: str,
        difficulty: Union[DifficultyTier, str],
        count: int,
        question_types: Optional[Sequence[Union[QuestionType, str]]] = None
    ) -> List[Question]:
        """
        Generate questions for a subject at a difficulty tier.

        Args:
            subject: Subject whose templates are used
            difficulty: Tier of every generated question
            count: Number of questions to generate
            question_types: Optional restriction on question types

        Returns:
            List of generated questions

        Raises:
            UnknownSubjectError: If the subject has no templates
            ValidationError: If the count, tier or type filter is invalid
            TemplateVariableError: If a template cannot be fully resolved
        """
        if not self.library.has_subject(subject):
            raise UnknownSubjectError(subject, self.library.subjects())
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise ValidationError("Question count must be a positive integer", details={"count": count})
        tier = self._coerce_tier(difficulty)
        types = self._coerce_types(question_types)

        grouped = self.library.get_templates(subject, types)
        if not grouped:
            raise ValidationError(
                f"No templates for subject {subject} match the requested question types",
                details={"subject": subject, "question_types": [t.value for t in types or []]}
            )

        topics = sorted(grouped)
        questions = []
        for _ in range(count):
            topic = self.rng.choice(topics)
            template = self.rng.choice(grouped[topic])
            questions.append(self.build_question(template, tier))

        logger.info(f"Generated {len(questions)} {tier.value} questions for {subject}")
        return questions

    def build_question(self, template: QuestionTemplate, tier: DifficultyTier) -> Question:
        """
        Build one question from a template.

        Args:
            template: Template to render
            tier: Difficulty tier of the question

        Returns:
            The generated question
        """
        values = self.resolve_variables(template.text, tier)
        content = VARIABLE_PATTERN.sub(lambda match: values[VariableKind(match.group(1))].text, template.text)
        if VARIABLE_PATTERN.search(content):
            raise TemplateVariableError(
                f"Template {template.id} left unresolved variables",
                details={"template_id": template.id, "content": content}
            )

        question_type = template.question_type
        answer = self._answer_value(template, values)

        options: List[AnswerOption] = []
        correct_answer = None
        min_words = None
        explanation = template.explanation

        if question_type == QuestionType.MULTIPLE_CHOICE:
            options = self._choice_options(answer.solution)
            correct_answer = next(o.id for o in options if o.text == answer.solution)
            explanation = f"{explanation} Answer: {answer.solution}"
        elif question_type == QuestionType.TRUE_FALSE:
            options = [AnswerOption(o.id, o.text, o.value) for o in TRUE_FALSE_OPTIONS]
            correct_answer = answer.solution
            explanation = f"{explanation} The statement is {answer.solution}."
        elif question_type == QuestionType.SHORT_ANSWER:
            correct_answer = answer.solution
            explanation = f"{explanation} Answer: {answer.solution}"
        elif question_type == QuestionType.FILL_BLANK:
            correct_answer = answer.accepted_forms()
            explanation = f"{explanation} Answer: {answer.solution}"
        elif question_type == QuestionType.ESSAY:
            min_words = essay_min_words_for(tier)

        return Question(
            type=question_type,
            content=content,
            difficulty=tier,
            points=points_for(tier),
            estimated_time_ms=estimated_time_for(tier, question_type),
            correct_answer=correct_answer,
            options=options,
            explanation=explanation,
            hints=list(template.hints),
            feedback=dict(template.feedback),
            min_words=min_words,
            subject=template.subject,
            topic=template.topic,
            template_id=template.id,
        )

    def resolve_variables(self, text: str, tier: DifficultyTier) -> Dict[VariableKind, VariableValue]:
        """
        Generate a value for every variable in a text.

        Variables a generator depends on are resolved first; a variable used
        more than once gets a single value.

        Raises:
            TemplateVariableError: If a variable has no generator
        """
        kinds = []
        for name in VARIABLE_PATTERN.findall(text):
            try:
                kind = VariableKind(name)
            except ValueError:
                raise TemplateVariableError(f"Unknown template variable: {name}", details={"variable": name})
            if kind not in kinds:
                kinds.append(kind)

        values: Dict[VariableKind, VariableValue] = {}

        def resolve(kind: VariableKind, pending: tuple) -> None:
            if kind in values:
                return
            if kind in pending:
                raise TemplateVariableError(f"Circular dependency for variable: {kind.value}")
            spec = VARIABLE_GENERATORS.get(kind)
            if spec is None:
                raise TemplateVariableError(
                    f"No generator registered for variable: {kind.value}", details={"variable": kind.value}
                )
            for dependency in spec.depends_on:
                resolve(dependency, pending + (kind,))
            values[kind] = spec.generate(tier, self.rng, values)

        for kind in kinds:
            resolve(kind, ())
        return values

    def _answer_value(self, template: QuestionTemplate, values: Dict[VariableKind, VariableValue]) -> VariableValue:
        if template.question_type == QuestionType.ESSAY:
            return VariableValue("")
        answer = values.get(template.answer_variable)
        if answer is None or answer.solution is None:
            raise ConfigurationError(
                f"Template {template.id} has no variable providing its answer",
                config_key=template.id
            )
        return answer

    def _choice_options(self, solution: str) -> List[AnswerOption]:
        if not NUMBER_PATTERN.search(solution):
            raise ConfigurationError(f"Cannot derive distractors for answer: {solution}")

        texts = [solution]
        for _ in range(MAX_DISTRACTOR_ATTEMPTS):
            if len(texts) == OPTION_COUNT:
                break
            candidate = perturb_numbers(solution, self.rng)
            if candidate not in texts:
                texts.append(candidate)
        else:
            if len(texts) < OPTION_COUNT:
                raise ConfigurationError(f"Could not derive {OPTION_COUNT - 1} distinct distractors")

        self.rng.shuffle(texts)
        return [AnswerOption(id=f"option_{index}", text=text, value=text) for index, text in enumerate(texts)]

    @staticmethod
    def _coerce_tier(difficulty: Union[DifficultyTier, str]) -> DifficultyTier:
        if isinstance(difficulty, DifficultyTier):
            return difficulty
        try:
            return DifficultyTier(difficulty)
        except ValueError:
            raise ValidationError(f"Invalid difficulty: {difficulty}", details={"difficulty": difficulty})

    @staticmethod
    def _coerce_types(question_types) -> Optional[List[QuestionType]]:
        if not question_types:
            return None
        coerced = []
        for value in question_types:
            try:
                coerced.append(value if isinstance(value, QuestionType) else QuestionType(value))
            except ValueError:
                raise ValidationError(f"Invalid question type: {value}", details={"question_type": value})
        return coerced
