from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from core.database import Base

# Amounts are kept as decimal strings so no backend rounds them through float.


# USER

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    username = Column(String, nullable=False)
    wallet_address = Column(String, unique=True, index=True, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)

    balances = relationship("UserBalance", back_populates="user")


# TOKEN

class Token(Base):
    __tablename__ = "tokens"

    id = Column(Integer, primary_key=True, index=True)

    symbol = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    logo_url = Column(String, nullable=True)
    decimals = Column(Integer, nullable=False, default=18)
    contract_address = Column(String, nullable=True)
    network = Column(String, nullable=False, default="ethereum")


# BALANCES

class UserBalance(Base):
    __tablename__ = "user_balances"
    __table_args__ = (UniqueConstraint("user_id", "token_id", name="uq_user_balance_user_token"),)

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    token_id = Column(Integer, ForeignKey("tokens.id"), nullable=False)
    balance = Column(String, nullable=False, default="0")

    updated_at = Column(DateTime(timezone=True), nullable=False)

    user = relationship("User", back_populates="balances")


# TRANSACTIONS

class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    type = Column(String, nullable=False)      # swap | buy | sell
    status = Column(String, nullable=False)    # pending | completed | failed

    from_token_id = Column(Integer, ForeignKey("tokens.id"), nullable=False)
    to_token_id = Column(Integer, ForeignKey("tokens.id"), nullable=False)
    from_amount = Column(String, nullable=False)
    to_amount = Column(String, nullable=False)
    price = Column(String, nullable=False)
    network_fee = Column(String, nullable=False)

    tx_hash = Column(String, nullable=True)
    meta = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


# PRICES

class TokenPrice(Base):
    __tablename__ = "token_prices"

    id = Column(Integer, primary_key=True, index=True)

    token_id = Column(Integer, ForeignKey("tokens.id"), unique=True, nullable=False)

    price = Column(String, nullable=False)
    price_change_24h = Column(String, nullable=True)
    volume_24h = Column(String, nullable=True)
    market_cap = Column(String, nullable=True)
    rank = Column(Integer, nullable=True)
    supply = Column(String, nullable=True)
    ath = Column(String, nullable=True)
    ath_change_percentage = Column(String, nullable=True)

    updated_at = Column(DateTime(timezone=True), nullable=False)
