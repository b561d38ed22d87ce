SCHEMA_SQL = r"""
-- Import batches (exportaciones): composition lives in the JSON body
CREATE TABLE IF NOT EXISTS batches (
  id TEXT PRIMARY KEY,
  created_at TEXT NOT NULL,              -- ISO datetime, creation order
  data TEXT NOT NULL                     -- JSON document
);

-- Deliveries (entregas): bars and the audit log are embedded
CREATE TABLE IF NOT EXISTS deliveries (
  id TEXT PRIMARY KEY,
  created_at TEXT NOT NULL,
  data TEXT NOT NULL
);

-- Forward-sold commitments (FUTURA), deleted once matched to a bar
CREATE TABLE IF NOT EXISTS forward_commitments (
  id TEXT PRIMARY KEY,
  created_at TEXT NOT NULL,
  data TEXT NOT NULL
);

-- Batch invoice attachments (base64 blob + metadata)
CREATE TABLE IF NOT EXISTS invoices (
  id TEXT PRIMARY KEY,
  created_at TEXT NOT NULL,
  data TEXT NOT NULL
);
"""

COLLECTIONS = ("batches", "deliveries", "forward_commitments", "invoices")
