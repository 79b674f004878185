# FILE: converter/audit/models.py
"""
Conversion audit - Database Models

One row in `conversions` per session (keyed by the session id), plus child rows
for every completion call, phase output, validation and persisted contract.
Written off the stream path by DatabaseAuditSink; read by the history endpoints.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Boolean, JSON
from sqlalchemy.orm import relationship
from converter.db import Base


class Conversion(Base):
    __tablename__ = "conversions"

    id = Column(String(32), primary_key=True)  # session id (uuid4 hex)
    client_session = Column(String(64), nullable=True, index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    source_code = Column(Text, nullable=False)
    source_hash = Column(String(64), nullable=False, index=True)
    source_lines = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    # success | failed | error | cancelled | timeout (NULL while running)
    final_status = Column(String(20), nullable=True, index=True)
    error_message = Column(Text, nullable=True)
    total_attempts = Column(Integer, default=0, nullable=False)
    is_multi_contract = Column(Boolean, default=False, nullable=False)
    contract_count = Column(Integer, default=0, nullable=False)

    api_attempts = relationship("ApiAttempt", back_populates="conversion", cascade="all, delete-orphan")
    contracts = relationship("ContractRecord", back_populates="conversion", cascade="all, delete-orphan")
    validations = relationship("ValidationAttempt", back_populates="conversion", cascade="all, delete-orphan")


class ApiAttempt(Base):
    """One completion oracle call (any phase, any repair attempt)."""
    __tablename__ = "api_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversion_id = Column(String(32), ForeignKey("conversions.id", ondelete="CASCADE"), nullable=False, index=True)
    stage = Column(String(20), nullable=False)
    attempt_number = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    success = Column(Boolean, default=False, nullable=False)
    model = Column(String(100), nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    input_tokens = Column(Integer, nullable=True)
    output_tokens = Column(Integer, nullable=True)
    cache_read_tokens = Column(Integer, nullable=True)
    cache_write_tokens = Column(Integer, nullable=True)

    system_prompt = Column(Text, nullable=True)
    user_message = Column(Text, nullable=True)
    response_json = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)

    conversion = relationship("Conversion", back_populates="api_attempts")


class SemanticAnalysis(Base):
    """Phase 1 domain model."""
    __tablename__ = "semantic_analyses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversion_id = Column(String(32), ForeignKey("conversions.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    domain = Column(String(255), nullable=True)
    analysis_json = Column(JSON, nullable=False)
    model = Column(String(100), nullable=True)
    duration_ms = Column(Integer, nullable=True)


class ArchitectureDesign(Base):
    """Phase 2 UTXO architecture."""
    __tablename__ = "architecture_designs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversion_id = Column(String(32), ForeignKey("conversions.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    contract_count = Column(Integer, default=0, nullable=False)
    template_count = Column(Integer, default=0, nullable=False)
    architecture_json = Column(JSON, nullable=False)
    model = Column(String(100), nullable=True)
    duration_ms = Column(Integer, nullable=True)


class ValidationAttempt(Base):
    __tablename__ = "validation_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversion_id = Column(String(32), ForeignKey("conversions.id", ondelete="CASCADE"), nullable=False, index=True)
    contract_name = Column(String(255), nullable=False)
    attempt_number = Column(Integer, nullable=False)
    passed = Column(Boolean, default=False, nullable=False)
    validation_error = Column(Text, nullable=True)
    code_hash = Column(String(64), nullable=False)
    bytecode_size = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    conversion = relationship("Conversion", back_populates="validations")


class ContractRecord(Base):
    """Final (or last failing) version of each contract in a session."""
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversion_id = Column(String(32), ForeignKey("conversions.id", ondelete="CASCADE"), nullable=False, index=True)
    contract_uuid = Column(String(36), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=True)
    purpose = Column(Text, nullable=True)
    deployment_order = Column(Integer, default=0, nullable=False)
    cashscript_code = Column(Text, nullable=False)
    code_hash = Column(String(64), nullable=False, index=True)
    line_count = Column(Integer, default=0, nullable=False)
    bytecode_size = Column(Integer, nullable=True)
    is_validated = Column(Boolean, default=False, nullable=False)
    validation_error = Column(Text, nullable=True)
    attempt = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    conversion = relationship("Conversion", back_populates="contracts")
