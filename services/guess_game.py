"""
Guessing Game State Machine.

Per-item multiple choice game shown when a gallery card is opened: five
names, one of them the person behind the avatar, three attempts.

States:
- IDLE: no item open.
- READY: options generated, waiting for a selection and a submit.
- SUBMITTED: a guess is being evaluated and recorded; further submits are
  rejected until it settles.
- REVEALED: terminal for the session, either after a correct guess or after
  the last attempt; the correct name is disclosed.

Opening an item always starts a fresh session with three attempts. Nothing
ties attempts to the user or the item across sessions.

On the first correct guess ever seen by the injected `PreferenceStore`, the
game raises `show_external_prompt`; dismissing it (accepted or not) stores
the flag so the prompt never returns on this device.
"""

import random
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterable, List, Optional

from core.models import UNKNOWN_PERSON_NAME, correct_answer
from services.preferences import PreferenceStore

logger = logging.getLogger("services.guess_game")

MAX_ATTEMPTS = 3
OPTION_COUNT = 5
DISTRACTOR_COUNT = OPTION_COUNT - 1
EXTERNAL_PROMPT_KEY = "hasShownVoteDialog"


class GuessState(str, Enum):
    IDLE = "idle"
    READY = "ready"
    SUBMITTED = "submitted"
    REVEALED = "revealed"


class GuessGameError(Exception):
    """Operation not allowed in the current state"""


@dataclass
class GuessOutcome:
    item_id: str
    guessed_name: str
    is_correct: bool
    attempts_left: int
    revealed: bool
    # Only disclosed once the session is over
    correct_name: Optional[str] = None


def build_options(
    correct_name: str, directory: Iterable[str], rng: Optional[random.Random] = None
) -> List[str]:
    """
    Four distractors plus the correct name, shuffled.

    Distractors come from the directory without the correct name; missing
    slots are filled with numbered placeholder names that never repeat an
    existing option.
    """
    rng = rng or random.Random()

    others = [name for name in dict.fromkeys(directory) if name and name != correct_name]
    rng.shuffle(others)
    distractors = others[:DISTRACTOR_COUNT]

    taken = set(distractors) | {correct_name}
    counter = len(distractors)
    while len(distractors) < DISTRACTOR_COUNT:
        counter += 1
        placeholder = f"{UNKNOWN_PERSON_NAME} {counter}"
        if placeholder in taken:
            continue
        taken.add(placeholder)
        distractors.append(placeholder)

    options = distractors + [correct_name]
    rng.shuffle(options)
    return options


class GuessGame:
    """One modal's worth of guessing game state"""

    def __init__(
        self,
        preferences: PreferenceStore,
        rng: Optional[random.Random] = None,
        recorder: Optional[Callable[[GuessOutcome], Awaitable[object]]] = None,
        max_attempts: int = MAX_ATTEMPTS,
        notify: Optional[Callable[[str, str], None]] = None,
    ):
        self.preferences = preferences
        self.rng = rng or random.Random()
        self.recorder = recorder
        self.notify = notify
        self.max_attempts = max_attempts

        self._session = 0
        self.state = GuessState.IDLE
        self.item = None
        self.options: List[str] = []
        self.attempts_left = max_attempts
        self.selected: Optional[str] = None
        self.last_outcome: Optional[GuessOutcome] = None
        self.guesses: List[str] = []
        self.show_external_prompt = False

    @property
    def correct_name(self) -> Optional[str]:
        if self.item is None:
            return None
        return correct_answer(self.item.person_name)

    @property
    def is_correct(self) -> bool:
        return self.last_outcome is not None and self.last_outcome.is_correct

    def open(self, item, names: Iterable[str]) -> List[str]:
        """Start a fresh session for `item`; returns the display options"""
        self._session += 1
        self.item = item
        self.attempts_left = self.max_attempts
        self.selected = None
        self.last_outcome = None
        self.guesses = []
        self.show_external_prompt = False
        self.options = build_options(correct_answer(item.person_name), names, self.rng)
        self.state = GuessState.READY
        logger.debug(f"Opened guessing game for item {item.id} with {len(self.options)} options")
        return self.options

    def close(self):
        self._session += 1
        self.state = GuessState.IDLE
        self.item = None
        self.options = []
        self.selected = None
        self.last_outcome = None
        self.guesses = []
        self.attempts_left = self.max_attempts

    def select(self, name: str):
        if self.state != GuessState.READY:
            raise GuessGameError(f"Cannot select while {self.state.value}")
        if name not in self.options:
            raise GuessGameError(f"Not one of the options: {name!r}")
        self.selected = name

    async def submit(self) -> GuessOutcome:
        """Evaluate the selected name and consume one attempt"""
        if self.state != GuessState.READY:
            raise GuessGameError(f"Cannot submit while {self.state.value}")
        if self.selected is None:
            raise GuessGameError("Select a name before submitting")

        session = self._session
        self.state = GuessState.SUBMITTED

        guessed = self.selected
        is_correct = guessed == self.correct_name
        self.attempts_left -= 1
        self.guesses.append(guessed)
        revealed = is_correct or self.attempts_left == 0

        outcome = GuessOutcome(
            item_id=self.item.id,
            guessed_name=guessed,
            is_correct=is_correct,
            attempts_left=self.attempts_left,
            revealed=revealed,
            correct_name=self.correct_name if revealed else None,
        )
        self.last_outcome = outcome

        if self.recorder is not None:
            try:
                await self.recorder(outcome)
            except Exception as e:
                # Recording is best effort; the game result stands
                logger.error(f"Failed to record guess for item {outcome.item_id}: {e}")
                if self.notify is not None:
                    self.notify("error", "Could not save your guess")

        if session != self._session:
            logger.debug("Guessing session closed while the guess was being recorded")
            return outcome

        if revealed:
            self.state = GuessState.REVEALED
        else:
            self.state = GuessState.READY

        if is_correct and not self.preferences.get(EXTERNAL_PROMPT_KEY, False):
            self.show_external_prompt = True

        logger.info(
            f"Guess on item {outcome.item_id}: correct={is_correct}, "
            f"attempts_left={self.attempts_left}"
        )
        return outcome

    def dismiss_external_prompt(self, accepted: bool = False) -> bool:
        """Hide the prompt for good; returns whether the user accepted it"""
        self.preferences.set(EXTERNAL_PROMPT_KEY, True)
        self.show_external_prompt = False
        return accepted
