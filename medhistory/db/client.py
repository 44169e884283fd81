"""
Lightweight Postgres client utilities.

Uses psycopg (v3). Only ``generated_medical_histories`` is owned by this
service; patient, appointment and consultation tables are read-only here.
"""

import psycopg

from medhistory.db.config import DBConfig


SCHEMA_SQL = """
create extension if not exists "uuid-ossp";

create table if not exists generated_medical_histories (
  id uuid primary key default uuid_generate_v4(),
  patient_id uuid not null,
  generated_by uuid not null,
  content text not null,
  format varchar(20) not null default 'markdown'
    check (format in ('markdown','html','json','plain_text')),
  history_type varchar(30) not null default 'complete'
    check (history_type in ('complete','summary','chronological','by_systems')),
  start_date date,
  end_date date,
  include_vital_signs boolean not null default true,
  include_prescriptions boolean not null default true,
  language varchar(5) not null default 'es',
  generated_at timestamptz not null default now(),
  tokens_used int,
  notes text,
  created_at timestamptz not null default now(),
  updated_at timestamptz not null default now()
);

create index if not exists idx_generated_histories_patient
  on generated_medical_histories (patient_id, generated_at desc);
"""


def get_conn(config: DBConfig) -> psycopg.Connection:
    """Open a blocking connection (use proxy or private IP)."""
    return psycopg.connect(
        host=config.host,
        port=config.port,
        dbname=config.name,
        user=config.user,
        password=config.password,
        sslmode=config.sslmode,
    )


def init_schema(conn: psycopg.Connection) -> None:
    """Create tables/extensions if missing."""
    with conn, conn.cursor() as cur:
        cur.execute(SCHEMA_SQL)
