"""
Question Template Library

This module holds everything needed to turn a template into a question:
1. The derivation tables for points, estimated time and essay length
2. Typed variable generators that produce text together with its solution
3. The built-in templates, grouped by subject and topic
4. A TemplateLibrary indexing templates for selection
"""

import math
import random
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from assessment_engine.common.error_handling import ConfigurationError
from assessment_engine.common.logger import app_logger
from assessment_engine.assessments.models import DifficultyTier, QuestionType

# Module logger
logger = app_logger.getChild("templates")

B, I, A, E = (
    DifficultyTier.BEGINNER,
    DifficultyTier.INTERMEDIATE,
    DifficultyTier.ADVANCED,
    DifficultyTier.EXPERT,
)

POINTS_BY_TIER: Dict[DifficultyTier, int] = {B: 1, I: 2, A: 3, E: 4}

BASE_TIME_MS: Dict[DifficultyTier, int] = {B: 60_000, I: 120_000, A: 300_000, E: 600_000}

TYPE_TIME_MULTIPLIER: Dict[QuestionType, float] = {
    QuestionType.MULTIPLE_CHOICE: 1,
    QuestionType.TRUE_FALSE: 0.5,
    QuestionType.SHORT_ANSWER: 1.5,
    QuestionType.ESSAY: 3,
    QuestionType.FILL_BLANK: 1.2,
}

ESSAY_MIN_WORDS: Dict[DifficultyTier, int] = {B: 50, I: 100, A: 150, E: 250}

DEFAULT_FEEDBACK = {
    "correct": "Excellent! You have demonstrated a strong understanding of this concept.",
    "incorrect": "Not quite right. Let's review the key concepts and try again.",
    "partial": "You're on the right track! Consider reviewing the specific steps where you encountered difficulty.",
}

DEFAULT_HINTS = [
    "Start by identifying the given information",
    "Consider what formula or principle applies here",
    "Break down the problem into smaller steps",
    "Check your work by substituting back into the original equation",
]

VARIABLE_PATTERN = re.compile(r"\{([^{}]+)\}")


def points_for(tier: DifficultyTier) -> int:
    """
    Points awarded for a correct answer at a tier.

    Raises:
        ConfigurationError: If the tier has no entry
    """
    try:
        return POINTS_BY_TIER[tier]
    except KeyError:
        raise ConfigurationError(f"No points configured for tier {tier}", config_key="points_by_tier")


def estimated_time_for(tier: DifficultyTier, question_type: QuestionType) -> int:
    """
    Expected answering time in milliseconds for a tier and question type.

    Raises:
        ConfigurationError: If either table has no entry
    """
    try:
        base = BASE_TIME_MS[tier]
    except KeyError:
        raise ConfigurationError(f"No base time configured for tier {tier}", config_key="base_time_ms")
    try:
        multiplier = TYPE_TIME_MULTIPLIER[question_type]
    except KeyError:
        raise ConfigurationError(
            f"No time multiplier configured for type {question_type}", config_key="type_time_multiplier"
        )
    return int(round(base * multiplier))


def essay_min_words_for(tier: DifficultyTier) -> int:
    try:
        return ESSAY_MIN_WORDS[tier]
    except KeyError:
        raise ConfigurationError(f"No essay length configured for tier {tier}", config_key="essay_min_words")


def extract_variables(text: str) -> List[str]:
    """Names of the ``{variable}`` tokens in a text, in order of appearance."""
    return VARIABLE_PATTERN.findall(text)


#------------------------------------------------------------------------------
# Variable generators
#------------------------------------------------------------------------------

class VariableKind(Enum):
    """Template variables the library knows how to generate."""
    EQUATION = "equation"
    CLAIM = "claim"
    EXPRESSION = "expression"
    FIGURE = "figure"
    GEOMETRIC_STATEMENT = "geometric_statement"
    PHYSICS_PROBLEM = "physics_problem"
    CONCEPT_PAIR = "concept_pair"
    SCENARIO = "scenario"
    CHEMICAL_EQUATION = "chemical_equation"
    COMPOUND = "compound"
    GRAMMAR_ITEM = "grammar_item"
    INCORRECT_SENTENCE = "incorrect_sentence"
    SENTENCE_CLAIM = "sentence_claim"
    PHRASE = "phrase"
    NUMBER = "number"


@dataclass
class VariableValue:
    """
    A generated variable.

    ``text`` is substituted into the template; ``solution`` is the answer the
    variable implies, and ``accepted`` lists equivalent written forms.
    """
    text: str
    solution: Optional[str] = None
    accepted: List[str] = field(default_factory=list)

    def accepted_forms(self) -> List[str]:
        forms = [self.solution] if self.solution is not None else []
        for form in self.accepted:
            if form not in forms:
                forms.append(form)
        return forms


Generator = Callable[[DifficultyTier, random.Random, Dict[VariableKind, VariableValue]], VariableValue]


@dataclass(frozen=True)
class VariableSpec:
    generate: Generator
    depends_on: Tuple[VariableKind, ...] = ()


def _term(coefficient: int, power: int, first: bool) -> str:
    symbol = {0: "", 1: "x", 2: "x²", 3: "x³"}[power]
    magnitude = abs(coefficient)
    body = symbol if magnitude == 1 and power > 0 else f"{magnitude}{symbol}"
    if first:
        return f"-{body}" if coefficient < 0 else body
    return f"{'-' if coefficient < 0 else '+'} {body}"


def format_polynomial(coefficients: List[int]) -> str:
    """Render coefficients (highest power first) as a polynomial in x."""
    degree = len(coefficients) - 1
    terms = []
    for index, coefficient in enumerate(coefficients):
        if coefficient == 0:
            continue
        terms.append(_term(coefficient, degree - index, first=not terms))
    return " ".join(terms) if terms else "0"


def _spacing_variants(text: str) -> List[str]:
    variants = [text, text.replace(" ", "")]
    caret = text.replace("²", "^2").replace("³", "^3")
    variants.extend([caret, caret.replace(" ", "")])
    unique = []
    for variant in variants:
        if variant not in unique:
            unique.append(variant)
    return unique


def _distinct_ints(rng: random.Random, low: int, high: int, count: int, exclude_zero: bool = True) -> List[int]:
    pool = [n for n in range(low, high + 1) if n != 0 or not exclude_zero]
    return sorted(rng.sample(pool, count))


def _equation(tier, rng, context):
    if tier == B:
        a, x, b = rng.randint(2, 9), rng.randint(-10, 10), rng.randint(1, 20)
        return VariableValue(f"{a}x + {b} = {a * x + b}", str(x))
    if tier == I:
        r1, r2 = _distinct_ints(rng, -9, 9, 2)
        text = f"{format_polynomial([1, -(r1 + r2), r1 * r2])} = 0"
        return VariableValue(text, f"{r1}, {r2}", [f"{r1},{r2}", f"{r2}, {r1}", f"{r2},{r1}"])
    if tier == A:
        r1, r2, r3 = _distinct_ints(rng, -5, 5, 3)
        coefficients = [1, -(r1 + r2 + r3), r1 * r2 + r1 * r3 + r2 * r3, -(r1 * r2 * r3)]
        text = f"{format_polynomial(coefficients)} = 0"
        return VariableValue(text, f"{r1}, {r2}, {r3}", [f"{r1},{r2},{r3}"])
    # log10(kx) + b = c  =>  kx = 10**(c - b)
    exponent = rng.randint(2, 3)
    k = rng.choice([1, 2, 4, 5, 10, 20, 25])
    b = rng.randint(1, 9)
    x = 10 ** exponent // k
    return VariableValue(f"log10({k}x) + {b} = {b + exponent}", str(x))


def _claim(tier, rng, context):
    roots = [int(n) for n in re.findall(r"-?\d+", context[VariableKind.EQUATION].solution)]
    if rng.random() < 0.5:
        return VariableValue(str(rng.choice(roots)), "true")
    candidates = [n for n in range(min(roots) - 5, max(roots) + 6) if n not in roots]
    return VariableValue(str(rng.choice(candidates)), "false")


def _expression(tier, rng, context):
    if tier == B:
        a, b = rng.randint(2, 9), rng.randint(2, 9)
        return VariableValue(f"{a}x + {b}x", f"{a + b}x", [f"{a + b}*x"])
    if tier == I:
        a, b = rng.randint(2, 9), rng.randint(1, 9)
        solution = f"{a}x + {a * b}"
        return VariableValue(f"{a}(x + {b})", solution, _spacing_variants(solution))
    if tier == A:
        a, b = _distinct_ints(rng, -6, 6, 2)
        solution = f"{format_polynomial([1, a + b, a * b])}"
        text = f"(x {'-' if a < 0 else '+'} {abs(a)})(x {'-' if b < 0 else '+'} {abs(b)})"
        return VariableValue(text, solution, _spacing_variants(solution))
    a = rng.randint(2, 9)
    return VariableValue(f"(x + {a})² - (x - {a})²", f"{4 * a}x", [f"{4 * a}*x"])


def _figure(tier, rng, context):
    if tier == B:
        length, width = rng.randint(2, 12), rng.randint(2, 12)
        return VariableValue(f"rectangle with length {length} cm and width {width} cm", str(length * width))
    if tier == I:
        base, height = rng.randint(1, 10) * 2, rng.randint(2, 15)
        return VariableValue(f"triangle with base {base} cm and height {height} cm", str(base * height // 2))
    if tier == A:
        a, b = rng.randint(2, 10), rng.randint(11, 20)
        height = rng.randint(1, 8) * 2
        return VariableValue(
            f"trapezoid with parallel sides {a} cm and {b} cm and height {height} cm",
            str((a + b) * height // 2)
        )
    radius = rng.randint(2, 15)
    return VariableValue(
        f"circle with radius {radius} cm (round to two decimal places)",
        f"{math.pi * radius * radius:.2f}"
    )


GEOMETRIC_STATEMENTS = {
    B: [
        "the angles of a triangle add up to 180 degrees",
        "opposite sides of a rectangle are equal in length",
        "the diagonals of a square are equal in length",
    ],
    I: [
        "vertically opposite angles are equal",
        "the base angles of an isosceles triangle are equal",
        "the exterior angle of a triangle equals the sum of the two opposite interior angles",
    ],
    A: [
        "the angle in a semicircle is a right angle",
        "the diagonals of a parallelogram bisect each other",
        "angles subtended by the same arc of a circle are equal",
    ],
    E: [
        "the square of the hypotenuse equals the sum of the squares of the other two sides",
        "opposite angles of a cyclic quadrilateral sum to 180 degrees",
        "the perpendicular bisectors of a triangle's sides meet at a single point",
    ],
}


def _geometric_statement(tier, rng, context):
    return VariableValue(rng.choice(GEOMETRIC_STATEMENTS[tier]))


def _physics_problem(tier, rng, context):
    if tier == B:
        speed, seconds = rng.randint(2, 20), rng.randint(2, 12)
        return VariableValue(
            f"speed, in m/s, of an object that travels {speed * seconds} m in {seconds} s", str(speed)
        )
    if tier == I:
        mass, acceleration = rng.randint(2, 25), rng.randint(2, 10)
        return VariableValue(
            f"force, in newtons, needed to accelerate a {mass} kg mass at {acceleration} m/s²",
            str(mass * acceleration)
        )
    if tier == A:
        mass, velocity = rng.randint(1, 10) * 2, rng.randint(2, 15)
        return VariableValue(
            f"kinetic energy, in joules, of a {mass} kg object moving at {velocity} m/s",
            str(mass * velocity * velocity // 2)
        )
    mass, height = rng.randint(2, 20), rng.randint(2, 50)
    return VariableValue(
        f"gravitational potential energy, in joules, of a {mass} kg mass raised {height} m (use g = 9.8 m/s²)",
        f"{mass * height * 98 / 10:g}"
    )


CONCEPT_PAIRS = {
    B: ["speed and distance", "mass and weight", "heat and temperature"],
    I: ["force and acceleration", "voltage and current", "pressure and area"],
    A: ["work and energy", "frequency and wavelength", "momentum and impulse"],
    E: ["entropy and the direction of natural processes", "electric and magnetic fields",
        "mass and energy in special relativity"],
}

SCENARIOS = {
    B: ["a ball is dropped from a table", "ice is left in a warm room", "a magnet is brought near an iron nail"],
    I: ["a car brakes suddenly on a wet road", "a light ray passes from air into water",
        "a balloon is rubbed on a wool jumper"],
    A: ["the length of a pendulum is doubled", "a resistor is added in parallel to a circuit",
        "a gas is compressed at constant temperature"],
    E: ["a satellite's orbital radius is halved", "a charged particle enters a uniform magnetic field",
        "a spacecraft approaches the speed of light"],
}


def _concept_pair(tier, rng, context):
    return VariableValue(rng.choice(CONCEPT_PAIRS[tier]))


def _scenario(tier, rng, context):
    return VariableValue(rng.choice(SCENARIOS[tier]))


CHEMICAL_EQUATIONS = {
    B: [("H2 + O2 → H2O", "2 1 2"), ("N2 + H2 → NH3", "1 3 2"), ("Na + Cl2 → NaCl", "2 1 2")],
    I: [("CH4 + O2 → CO2 + H2O", "1 2 1 2"), ("Fe + O2 → Fe2O3", "4 3 2"), ("Al + O2 → Al2O3", "4 3 2")],
    A: [("C3H8 + O2 → CO2 + H2O", "1 5 3 4"), ("Fe2O3 + CO → Fe + CO2", "1 3 2 3"),
        ("KClO3 → KCl + O2", "2 2 3")],
    E: [("C2H6 + O2 → CO2 + H2O", "2 7 4 6"), ("C8H18 + O2 → CO2 + H2O", "2 25 16 18"),
        ("NH3 + O2 → NO + H2O", "4 5 4 6")],
}


def _chemical_equation(tier, rng, context):
    equation, coefficients = rng.choice(CHEMICAL_EQUATIONS[tier])
    numbers = coefficients.split()
    return VariableValue(equation, coefficients, [",".join(numbers), ", ".join(numbers)])


COMPOUNDS = {
    B: [("H2O", "18"), ("CO2", "44"), ("NaCl", "58.5")],
    I: [("NH3", "17"), ("CaCO3", "100"), ("H2SO4", "98")],
    A: [("C6H12O6", "180"), ("Ca(OH)2", "74"), ("Na2CO3", "106")],
    E: [("C12H22O11", "342"), ("(NH4)2SO4", "132"), ("Na2S2O3", "158")],
}


def _compound(tier, rng, context):
    formula, mass = rng.choice(COMPOUNDS[tier])
    return VariableValue(formula, mass)


GRAMMAR_ITEMS = {
    B: [("verb", "The cat sleeps on the mat.", "sleeps"),
        ("noun", "Happy children laughed.", "children"),
        ("adjective", "She wore a red coat.", "red")],
    I: [("adverb", "He ran quickly to the station.", "quickly"),
        ("pronoun", "Give the book to them.", "them"),
        ("preposition", "The keys are under the table.", "under")],
    A: [("subject", "After the storm, the old bridge collapsed.", "the old bridge"),
        ("direct object", "The committee approved the new budget.", "the new budget"),
        ("conjunction", "I wanted to go, but it was raining.", "but")],
    E: [("subordinate clause", "Although she was tired, she finished the report.", "although she was tired"),
        ("gerund", "Swimming every morning keeps him fit.", "swimming"),
        ("relative pronoun", "The author whose book won the prize spoke first.", "whose")],
}


def _grammar_item(tier, rng, context):
    element, sentence, answer = rng.choice(GRAMMAR_ITEMS[tier])
    return VariableValue(f'{element} in: "{sentence}"', answer)


SENTENCE_CORRECTIONS = {
    B: [("She go to school every day.", "She goes to school every day."),
        ("They is happy.", "They are happy."),
        ("I has a dog.", "I have a dog.")],
    I: [("He don't like apples.", "He doesn't like apples."),
        ("There is many books here.", "There are many books here."),
        ("She have finished her homework.", "She has finished her homework.")],
    A: [("Each of the students have a book.", "Each of the students has a book."),
        ("If I was you, I would apologise.", "If I were you, I would apologise."),
        ("Less people voted this year.", "Fewer people voted this year.")],
    E: [("Neither the manager nor the employees was informed.",
         "Neither the manager nor the employees were informed."),
        ("The number of errors were surprising.", "The number of errors was surprising."),
        ("Whom shall I say is calling?", "Who shall I say is calling?")],
}


def _incorrect_sentence(tier, rng, context):
    incorrect, corrected = rng.choice(SENTENCE_CORRECTIONS[tier])
    return VariableValue(incorrect, corrected, [corrected.rstrip(".?!")])


def _sentence_claim(tier, rng, context):
    incorrect, corrected = rng.choice(SENTENCE_CORRECTIONS[tier])
    if rng.random() < 0.5:
        return VariableValue(corrected, "true")
    return VariableValue(incorrect, "false")


PHRASES = {
    B: ["break the ice", "a piece of cake", "under the weather"],
    I: ["bite off more than you can chew", "the ball is in your court", "a blessing in disguise"],
    A: ["a double-edged sword", "to read between the lines", "the writing on the wall"],
    E: ["a pyrrhic victory", "to cross the Rubicon", "hoist with his own petard"],
}


def _phrase(tier, rng, context):
    return VariableValue(rng.choice(PHRASES[tier]))


def _number(tier, rng, context):
    return VariableValue(str(rng.randint(1, 2 + 2 * tier.rank)))


VARIABLE_GENERATORS: Dict[VariableKind, VariableSpec] = {
    VariableKind.EQUATION: VariableSpec(_equation),
    VariableKind.CLAIM: VariableSpec(_claim, depends_on=(VariableKind.EQUATION,)),
    VariableKind.EXPRESSION: VariableSpec(_expression),
    VariableKind.FIGURE: VariableSpec(_figure),
    VariableKind.GEOMETRIC_STATEMENT: VariableSpec(_geometric_statement),
    VariableKind.PHYSICS_PROBLEM: VariableSpec(_physics_problem),
    VariableKind.CONCEPT_PAIR: VariableSpec(_concept_pair),
    VariableKind.SCENARIO: VariableSpec(_scenario),
    VariableKind.CHEMICAL_EQUATION: VariableSpec(_chemical_equation),
    VariableKind.COMPOUND: VariableSpec(_compound),
    VariableKind.GRAMMAR_ITEM: VariableSpec(_grammar_item),
    VariableKind.INCORRECT_SENTENCE: VariableSpec(_incorrect_sentence),
    VariableKind.SENTENCE_CLAIM: VariableSpec(_sentence_claim),
    VariableKind.PHRASE: VariableSpec(_phrase),
    VariableKind.NUMBER: VariableSpec(_number),
}


#------------------------------------------------------------------------------
# Templates
#------------------------------------------------------------------------------

@dataclass
class QuestionTemplate:
    """
    A question template.

    The template fixes the question type; ``answer_variable`` names the
    variable whose solution becomes the answer key (None for essays).
    """
    id: str
    subject: str
    topic: str
    text: str
    question_type: QuestionType
    answer_variable: Optional[VariableKind] = None
    explanation: str = ""
    hints: List[str] = field(default_factory=lambda: list(DEFAULT_HINTS))
    feedback: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_FEEDBACK))

    @property
    def variables(self) -> List[str]:
        return extract_variables(self.text)


BUILTIN_TEMPLATES: List[QuestionTemplate] = [
    # Mathematics / algebra
    QuestionTemplate(
        id="algebra_solve", subject="mathematics", topic="algebra",
        text=("Solve for x: {equation}. Give every solution in ascending order, with a comma "
              "and a space between values (for example: -3, 5)."),
        question_type=QuestionType.SHORT_ANSWER, answer_variable=VariableKind.EQUATION,
        explanation="Rearrange the equation so one side is zero, then isolate or factor to find x.",
    ),
    QuestionTemplate(
        id="algebra_choice", subject="mathematics", topic="algebra",
        text="Which option lists every solution of {equation}?",
        question_type=QuestionType.MULTIPLE_CHOICE, answer_variable=VariableKind.EQUATION,
        explanation="Substitute each option into the equation and keep the one that balances both sides.",
    ),
    QuestionTemplate(
        id="algebra_check", subject="mathematics", topic="algebra",
        text="True or false: x = {claim} is a solution of {equation}.",
        question_type=QuestionType.TRUE_FALSE, answer_variable=VariableKind.CLAIM,
        explanation="Substitute the value into the equation and check whether both sides agree.",
    ),
    QuestionTemplate(
        id="algebra_simplify", subject="mathematics", topic="algebra",
        text="Simplify the expression: {expression}",
        question_type=QuestionType.FILL_BLANK, answer_variable=VariableKind.EXPRESSION,
        explanation="Expand any brackets and collect like terms.",
    ),
    # Mathematics / geometry
    QuestionTemplate(
        id="geometry_area", subject="mathematics", topic="geometry",
        text="Calculate the area, in square centimetres, of a {figure}.",
        question_type=QuestionType.SHORT_ANSWER, answer_variable=VariableKind.FIGURE,
        explanation="Identify the shape's area formula and substitute the given dimensions.",
    ),
    QuestionTemplate(
        id="geometry_area_choice", subject="mathematics", topic="geometry",
        text="What is the area, in square centimetres, of a {figure}?",
        question_type=QuestionType.MULTIPLE_CHOICE, answer_variable=VariableKind.FIGURE,
        explanation="Identify the shape's area formula and substitute the given dimensions.",
    ),
    QuestionTemplate(
        id="geometry_proof", subject="mathematics", topic="geometry",
        text="Prove that {geometric_statement}.",
        question_type=QuestionType.ESSAY,
        explanation="A complete proof states its assumptions and justifies every step.",
    ),
    # Science / physics
    QuestionTemplate(
        id="physics_calculate", subject="science", topic="physics",
        text="Calculate the {physics_problem}.",
        question_type=QuestionType.SHORT_ANSWER, answer_variable=VariableKind.PHYSICS_PROBLEM,
        explanation="Write down the governing formula, substitute the values and keep track of units.",
    ),
    QuestionTemplate(
        id="physics_choice", subject="science", topic="physics",
        text="Select the {physics_problem}.",
        question_type=QuestionType.MULTIPLE_CHOICE, answer_variable=VariableKind.PHYSICS_PROBLEM,
        explanation="Write down the governing formula, substitute the values and keep track of units.",
    ),
    QuestionTemplate(
        id="physics_relationship", subject="science", topic="physics",
        text="Explain the relationship between {concept_pair}.",
        question_type=QuestionType.ESSAY,
        explanation="Strong answers define both quantities and describe how a change in one affects the other.",
    ),
    QuestionTemplate(
        id="physics_predict", subject="science", topic="physics",
        text="Predict what happens when {scenario}.",
        question_type=QuestionType.ESSAY,
        explanation="Name the principle involved and reason from it to the outcome.",
    ),
    # Science / chemistry
    QuestionTemplate(
        id="chemistry_balance", subject="science", topic="chemistry",
        text="Balance the chemical equation: {chemical_equation}. Give the coefficients in order, separated by spaces.",
        question_type=QuestionType.FILL_BLANK, answer_variable=VariableKind.CHEMICAL_EQUATION,
        explanation="Count the atoms of each element on both sides and adjust coefficients until they match.",
    ),
    QuestionTemplate(
        id="chemistry_molar_mass", subject="science", topic="chemistry",
        text=("Calculate the molar mass, in g/mol, of {compound}. Use H = 1, C = 12, N = 14, O = 16, "
              "Na = 23, S = 32, Cl = 35.5, Ca = 40."),
        question_type=QuestionType.SHORT_ANSWER, answer_variable=VariableKind.COMPOUND,
        explanation="Multiply each element's atomic mass by its count in the formula and add the results.",
    ),
    # Language / grammar
    QuestionTemplate(
        id="grammar_identify", subject="language", topic="grammar",
        text="Identify the {grammar_item}",
        question_type=QuestionType.SHORT_ANSWER, answer_variable=VariableKind.GRAMMAR_ITEM,
        explanation="Consider the role each word or phrase plays in the sentence.",
        hints=["Read the sentence aloud", "Ask what job each word does in the sentence"],
    ),
    QuestionTemplate(
        id="grammar_correct", subject="language", topic="grammar",
        text='Correct the grammatical error in: "{incorrect_sentence}"',
        question_type=QuestionType.FILL_BLANK, answer_variable=VariableKind.INCORRECT_SENTENCE,
        explanation="Check that subjects and verbs agree and that the right word form is used.",
        hints=["Find the subject and its verb", "Check agreement in number and tense"],
    ),
    QuestionTemplate(
        id="grammar_check", subject="language", topic="grammar",
        text='True or false: the sentence "{sentence_claim}" is grammatically correct.',
        question_type=QuestionType.TRUE_FALSE, answer_variable=VariableKind.SENTENCE_CLAIM,
        explanation="Check that subjects and verbs agree and that the right word form is used.",
        hints=["Find the subject and its verb", "Check agreement in number and tense"],
    ),
    # Language / comprehension
    QuestionTemplate(
        id="comprehension_main_idea", subject="language", topic="comprehension",
        text="What is the main idea of the passage?",
        question_type=QuestionType.ESSAY,
        explanation="The main idea is the point every paragraph supports.",
    ),
    QuestionTemplate(
        id="comprehension_phrase", subject="language", topic="comprehension",
        text='Explain the meaning of "{phrase}" in context.',
        question_type=QuestionType.ESSAY,
        explanation="Explain the figurative meaning and how the surrounding text supports it.",
    ),
    QuestionTemplate(
        id="comprehension_tone", subject="language", topic="comprehension",
        text="Analyze the author's tone in paragraph {number}.",
        question_type=QuestionType.ESSAY,
        explanation="Support each claim about tone with words or phrases from the paragraph.",
    ),
]


class TemplateLibrary:
    """Templates indexed by subject and topic."""

    def __init__(self, templates: Optional[List[QuestionTemplate]] = None):
        self.templates: Dict[str, QuestionTemplate] = {}
        self._by_subject: Dict[str, Dict[str, List[str]]] = {}
        for template in BUILTIN_TEMPLATES if templates is None else templates:
            self.add(template)
        logger.debug(f"Loaded {len(self.templates)} question templates")

    def add(self, template: QuestionTemplate) -> None:
        """Add a template to the library."""
        self.templates[template.id] = template
        topic_ids = self._by_subject.setdefault(template.subject, {}).setdefault(template.topic, [])
        if template.id not in topic_ids:
            topic_ids.append(template.id)

    def get(self, template_id: str) -> Optional[QuestionTemplate]:
        """Get a template by ID."""
        return self.templates.get(template_id)

    def subjects(self) -> List[str]:
        return sorted(self._by_subject)

    def topics(self, subject: str) -> List[str]:
        return sorted(self._by_subject.get(subject, {}))

    def has_subject(self, subject: str) -> bool:
        return subject in self._by_subject

    def get_templates(
        self,
        subject: str,
        question_types: Optional[List[QuestionType]] = None
    ) -> Dict[str, List[QuestionTemplate]]:
        """
        Get a subject's templates grouped by topic.

        Args:
            subject: Subject name
            question_types: Optional restriction on the template question types

        Returns:
            Mapping of topic to templates; topics with no match are omitted
        """
        grouped = {}
        for topic, template_ids in self._by_subject.get(subject, {}).items():
            templates = [self.templates[tid] for tid in template_ids]
            if question_types:
                templates = [t for t in templates if t.question_type in question_types]
            if templates:
                grouped[topic] = templates
        return grouped
