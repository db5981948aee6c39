# gatehouse/models/card_claim.py
"""
Physical card claims.
A row exists per card held by a leg of an open session; released_at is stamped
when the session completes. The partial unique index makes two open claims on
the same card impossible even if the locked availability check is bypassed.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, text
from gatehouse.database import Base


class CardClaim(Base):
    __tablename__ = "card_claims"
    __table_args__ = (
        Index(
            "ix_card_claims_open_card",
            "card_number",
            unique=True,
            postgresql_where=text("released_at IS NULL"),
            sqlite_where=text("released_at IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    card_number = Column(String(30), nullable=False)
    registro_id = Column(Integer, ForeignKey("registros.id"), nullable=False, index=True)
    leg_id = Column(Integer, ForeignKey("registro_visitantes.id"), nullable=False)
    claimed_at = Column(DateTime, nullable=False)
    released_at = Column(DateTime)

    def __repr__(self):
        return f"<CardClaim card={self.card_number} registro={self.registro_id} released={self.released_at}>"
