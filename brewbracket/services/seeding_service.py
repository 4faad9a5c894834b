"""
Seeding & Pairing Service

Turns seeds 1..N into Round-1 pairings:
- Even N: 1 vs N, 2 vs N-1, ...
- Odd N: seed 1 takes the bye, then 2 vs N, 3 vs N-1, ...

Rules:
- No random(): reseeding is ordered by SHA256 of a caller-supplied salt
- Exactly one bye iff N is odd, always seed 1
"""
import hashlib
import logging
import math
import re
from typing import Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from brewbracket.exceptions import InvalidInputError
from brewbracket.orm.tournament import TournamentParticipant
from brewbracket.schemas.bracket import BracketPair, SeedAssignment
from brewbracket.storage import BracketStorage

logger = logging.getLogger(__name__)


# =============================================================================
# Pure helpers
# =============================================================================

def generate_round1_pairings(participant_count: int) -> List[BracketPair]:
    """
    Build Round-1 pairings for seeds 1..N.

    Returns ceil(N/2) pairs; every seed appears exactly once.

    Raises:
        InvalidInputError: If N < 2
    """
    n = participant_count
    if n < 2:
        raise InvalidInputError(
            f"At least 2 participants are required to generate a bracket, got {n}",
            details={"participant_count": n},
        )

    pairs: List[BracketPair] = []
    if n % 2 == 1:
        pairs.append(BracketPair(seed1=1, seed2=None))
        for i in range(2, n // 2 + 2):
            pairs.append(BracketPair(seed1=i, seed2=n - i + 2))
    else:
        for i in range(1, n // 2 + 1):
            pairs.append(BracketPair(seed1=i, seed2=n - i + 1))
    return pairs


def derive_total_rounds(participant_count: int) -> int:
    """ceil(log2 N), minimum 1."""
    if participant_count < 2:
        return 1
    return math.ceil(math.log2(participant_count))


def validate_seed_sequence(seeds: Sequence[Optional[int]]) -> None:
    """Seeds must be exactly 1..N with no gaps or duplicates."""
    expected = list(range(1, len(seeds) + 1))
    actual = sorted(s for s in seeds if s is not None)
    if actual != expected:
        raise InvalidInputError(
            f"Seeds must be exactly 1..{len(seeds)}, got {list(seeds)}",
            details={"seeds": list(seeds)},
        )


def generate_cup_code(name: str, seed: int, index: Optional[int] = None) -> str:
    """
    Blind cup label for a competitor.

    "Maria Lopez", 7 -> "MA7". Test entrants get ATest, BTest, ...
    by index (or seed order when no index is given).
    """
    if re.search(r"test", name or "", re.IGNORECASE):
        test_index = index if index is not None else seed - 1
        return f"{chr(65 + (test_index % 26))}Test"

    letters = re.sub(r"[^a-zA-Z]", "", (name or "").strip())
    first_two = (letters[:2] if len(letters) >= 2 else (letters + "XX")[:2]).upper()
    return f"{first_two}{seed}"


def deterministic_hash(seed: str) -> int:
    """SHA256 as an integer; stands in for random() in reseeding."""
    return int(hashlib.sha256(seed.encode()).hexdigest(), 16)


def shuffled_order(participant_ids: Sequence[int], salt: str) -> List[int]:
    """Deterministic permutation of participant_ids for a given salt."""
    return sorted(participant_ids, key=lambda pid: (deterministic_hash(f"{salt}:{pid}"), pid))


# =============================================================================
# Persistence
# =============================================================================

async def randomize_seeds(
    tournament_id: int,
    salt: str,
    db: AsyncSession,
) -> List[SeedAssignment]:
    """
    Reseed every participant of a tournament and regenerate cup codes.

    Same salt, same seeds.
    """
    storage = BracketStorage(db)
    tournament = await storage.require_tournament(tournament_id, for_update=True)
    participants = await storage.get_tournament_participants(tournament.id)
    if len(participants) < 2:
        raise InvalidInputError(
            f"Tournament {tournament_id} needs at least 2 participants to seed",
            details={"tournament_id": tournament_id, "participant_count": len(participants)},
        )
    if await storage.get_max_round(tournament.id) > 0:
        raise InvalidInputError(
            f"Tournament {tournament_id} already has a bracket; seeds are frozen",
            details={"tournament_id": tournament_id},
        )

    by_id: Dict[int, TournamentParticipant] = {p.id: p for p in participants}
    order = shuffled_order(list(by_id), salt)

    # Clear first so the (tournament, seed) unique constraint never sees a duplicate
    for participant in participants:
        await storage.update_participant(participant.id, seed=None)

    assignments: List[SeedAssignment] = []
    for index, participant_id in enumerate(order):
        participant = by_id[participant_id]
        seed = index + 1
        cup_code = generate_cup_code(participant.display_name, seed, index)
        await storage.update_participant(participant.id, seed=seed, cup_code=cup_code)
        assignments.append(SeedAssignment(
            participant_id=participant.id,
            user_id=participant.user_id,
            seed=seed,
            cup_code=cup_code,
        ))

    await storage.commit()
    logger.info(f"Reseeded {len(assignments)} participants for tournament {tournament_id}")
    return assignments


async def assign_cup_codes(tournament_id: int, db: AsyncSession) -> Dict[int, str]:
    """Fill in missing cup codes from name + seed. Returns user_id -> cup code."""
    storage = BracketStorage(db)
    participants = await storage.get_tournament_participants(tournament_id)
    codes: Dict[int, str] = {}
    for index, participant in enumerate(participants):
        if participant.seed is None:
            continue
        cup_code = participant.cup_code
        if not cup_code:
            cup_code = generate_cup_code(participant.display_name, participant.seed, index)
            await storage.update_participant(participant.id, cup_code=cup_code)
        codes[participant.user_id] = cup_code
    await storage.flush()
    return codes
