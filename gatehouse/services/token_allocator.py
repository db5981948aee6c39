# gatehouse/services/token_allocator.py
"""
Physical card exclusivity.

A card is in use while it belongs to a visitor leg whose session is not completed.
Callers run inside the transaction that writes the leg: the availability check
reads the contending rows FOR UPDATE, then the claim row is flushed against the
partial unique index on open claims.
"""

from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gatehouse.errors import TokenConflict, ValidationError
from gatehouse.models.card_claim import CardClaim
from gatehouse.models.enums import RegistroStatus, TokenKind
from gatehouse.models.registro import Registro
from gatehouse.models.registro_visitante import RegistroVisitante
from gatehouse.utils.clock import utcnow
from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)


def _holder_query(db: Session, card_number: str, exclude_registro_id: Optional[int]):
    q = (
        db.query(Registro.id, Registro.code)
        .join(RegistroVisitante, RegistroVisitante.registro_id == Registro.id)
        .filter(
            RegistroVisitante.card_number == card_number,
            Registro.status != RegistroStatus.COMPLETED,
        )
    )
    if exclude_registro_id:
        q = q.filter(Registro.id != exclude_registro_id)
    return q


def assert_card_available(db: Session, card_number: str, exclude_registro_id: int = None):
    """Raise TokenConflict if another open session holds the card. Locks the rows read."""
    if not card_number:
        raise ValidationError("A card number is required when the token is a card.",
                              code="MISSING_CARD_NUMBER")

    holder = (
        _holder_query(db, card_number, exclude_registro_id)
        .with_for_update(of=RegistroVisitante)
        .first()
    )
    if holder:
        logger.warning(f"[CARD] {card_number} refused, held by {holder.code}")
        raise TokenConflict(f"Card {card_number} is already in use by session {holder.code}.")

    open_claim = db.query(CardClaim).filter(
        CardClaim.card_number == card_number,
        CardClaim.released_at == None,  # noqa: E711
    )
    if exclude_registro_id:
        open_claim = open_claim.filter(CardClaim.registro_id != exclude_registro_id)
    if open_claim.with_for_update().first():
        logger.warning(f"[CARD] {card_number} refused, open claim exists")
        raise TokenConflict(f"Card {card_number} is already in use.")


def claim_card(db: Session, leg: RegistroVisitante, card_number: str):
    """
    Check, write the leg, then record the claim. The leg may be new or persistent;
    its registro_id must be set. Cards shared inside one session are caught by the
    open-claim index.
    """
    assert_card_available(db, card_number, exclude_registro_id=leg.registro_id)
    leg.token_kind = TokenKind.CARD
    leg.card_number = card_number
    db.add(leg)
    db.flush()

    db.add(CardClaim(card_number=card_number, registro_id=leg.registro_id,
                     leg_id=leg.id, claimed_at=utcnow()))
    try:
        db.flush()
    except IntegrityError as exc:
        logger.warning(f"[CARD] {card_number} lost the claim race: {exc.orig}")
        raise TokenConflict(f"Card {card_number} is already in use.") from exc


def release_leg_card(db: Session, leg_id: int):
    now = utcnow()
    for claim in db.query(CardClaim).filter(CardClaim.leg_id == leg_id,
                                            CardClaim.released_at == None):  # noqa: E711
        claim.released_at = now
    # Release must hit the index before a new claim on the same number
    db.flush()


def release_session_cards(db: Session, registro_id: int) -> int:
    """Free every card held by a session. Called when the session completes."""
    now = utcnow()
    claims = db.query(CardClaim).filter(
        CardClaim.registro_id == registro_id,
        CardClaim.released_at == None,  # noqa: E711
    ).all()
    for claim in claims:
        claim.released_at = now
    return len(claims)


def check_card(db: Session, card_number: str, exclude_registro_id: int = None) -> Optional[str]:
    """Read-only card check for guard screens. Returns the holding session code, or None."""
    holder = _holder_query(db, card_number, exclude_registro_id).first()
    return holder.code if holder else None
