"""
SQL statements for the relational store.

Tables: users, salts, passwords, banks, texts, files. Record ids come from
``gen_random_uuid()``; ``updated_at`` is set to ``NOW()`` on every insert
and update. Reads, updates and deletes of user records always match both
``id`` and ``user_id``.
"""

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

INSERT_USER = """
INSERT INTO users (id, login, password)
VALUES (gen_random_uuid(), $1, $2)
RETURNING id, login, password
"""

INSERT_SALT = """
INSERT INTO salts (login, salt)
VALUES ($1, $2)
RETURNING salt
"""

SELECT_USER = """
SELECT u.id, u.login, u.password, s.salt
FROM users u, salts s
WHERE u.login = $1 AND s.login = $2
"""

# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------

_PASSWORD_COLUMNS = "id, user_id, name, login, password, meta, updated_at"

INSERT_PASSWORD = f"""
INSERT INTO passwords (id, user_id, name, login, password, meta, updated_at)
VALUES (gen_random_uuid(), $1, $2, $3, $4, $5, NOW())
RETURNING {_PASSWORD_COLUMNS}
"""

UPDATE_PASSWORD = f"""
UPDATE passwords
SET name = $3, login = $4, password = $5, meta = $6,
    updated_at = NOW()
WHERE id = $1 AND user_id = $2
RETURNING {_PASSWORD_COLUMNS}
"""

SELECT_PASSWORD = f"""
SELECT {_PASSWORD_COLUMNS}
FROM passwords
WHERE id = $1 AND user_id = $2
"""

SELECT_PASSWORDS = f"""
SELECT {_PASSWORD_COLUMNS}
FROM passwords
WHERE user_id = $1
ORDER BY updated_at
LIMIT $2
"""

DELETE_PASSWORD = f"""
DELETE FROM passwords
WHERE id = $1 AND user_id = $2
RETURNING {_PASSWORD_COLUMNS}
"""

# ---------------------------------------------------------------------------
# Banks
# ---------------------------------------------------------------------------

_BANK_COLUMNS = "id, user_id, name, card_number, cvc, owner, exp, meta, updated_at"

INSERT_BANK = f"""
INSERT INTO banks (id, user_id, name, card_number, cvc, owner, exp, meta, updated_at)
VALUES (gen_random_uuid(), $1, $2, $3, $4, $5, $6, $7, NOW())
RETURNING {_BANK_COLUMNS}
"""

UPDATE_BANK = f"""
UPDATE banks
SET name = $3, card_number = $4, cvc = $5, owner = $6,
    exp = $7, meta = $8, updated_at = NOW()
WHERE id = $1 AND user_id = $2
RETURNING {_BANK_COLUMNS}
"""

SELECT_BANK = f"""
SELECT {_BANK_COLUMNS}
FROM banks
WHERE id = $1 AND user_id = $2
"""

SELECT_BANKS = f"""
SELECT {_BANK_COLUMNS}
FROM banks
WHERE user_id = $1
ORDER BY updated_at
LIMIT $2
"""

DELETE_BANK = f"""
DELETE FROM banks
WHERE id = $1 AND user_id = $2
RETURNING {_BANK_COLUMNS}
"""

# ---------------------------------------------------------------------------
# Texts
# ---------------------------------------------------------------------------

_TEXT_COLUMNS = "id, user_id, name, text, meta, updated_at"

INSERT_TEXT = f"""
INSERT INTO texts (id, user_id, name, text, meta, updated_at)
VALUES (gen_random_uuid(), $1, $2, $3, $4, NOW())
RETURNING {_TEXT_COLUMNS}
"""

UPDATE_TEXT = f"""
UPDATE texts
SET name = $3, text = $4, meta = $5, updated_at = NOW()
WHERE id = $1 AND user_id = $2
RETURNING {_TEXT_COLUMNS}
"""

SELECT_TEXT = f"""
SELECT {_TEXT_COLUMNS}
FROM texts
WHERE id = $1 AND user_id = $2
"""

SELECT_TEXTS = f"""
SELECT {_TEXT_COLUMNS}
FROM texts
WHERE user_id = $1
ORDER BY updated_at
LIMIT $2
"""

DELETE_TEXT = f"""
DELETE FROM texts
WHERE id = $1 AND user_id = $2
RETURNING {_TEXT_COLUMNS}
"""

# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

_FILE_COLUMNS = "id, user_id, name, path, meta, updated_at"

INSERT_FILE = f"""
INSERT INTO files (id, user_id, name, path, meta, updated_at)
VALUES (gen_random_uuid(), $1, $2, $3, $4, NOW())
RETURNING {_FILE_COLUMNS}
"""

# path is written once, by INSERT_FILE
UPDATE_FILE = f"""
UPDATE files
SET name = $3, meta = $4, updated_at = NOW()
WHERE id = $1 AND user_id = $2
RETURNING {_FILE_COLUMNS}
"""

SELECT_FILE = f"""
SELECT {_FILE_COLUMNS}
FROM files
WHERE id = $1 AND user_id = $2
"""

SELECT_FILES = f"""
SELECT {_FILE_COLUMNS}
FROM files
WHERE user_id = $1
ORDER BY updated_at
LIMIT $2
"""

DELETE_FILE = f"""
DELETE FROM files
WHERE id = $1 AND user_id = $2
RETURNING {_FILE_COLUMNS}
"""
