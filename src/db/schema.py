# schema.py
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
  id INTEGER PRIMARY KEY,
  full_name TEXT NOT NULL,
  email TEXT,
  role TEXT NOT NULL,
  department TEXT,
  course_year_section TEXT,
  company TEXT,
  status TEXT NOT NULL DEFAULT 'active'
);
CREATE INDEX IF NOT EXISTS idx_users_role ON users(role, status);

CREATE TABLE IF NOT EXISTS categories (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS forms (
  form_id TEXT PRIMARY KEY,
  title TEXT NOT NULL,
  description TEXT NOT NULL DEFAULT '',
  category TEXT NOT NULL DEFAULT '',
  target_audience TEXT,
  image_ref TEXT,
  status TEXT NOT NULL DEFAULT 'draft',
  start_at TEXT,
  end_at TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sections (
  section_id TEXT NOT NULL,
  form_id TEXT NOT NULL REFERENCES forms(form_id) ON DELETE CASCADE,
  title TEXT NOT NULL DEFAULT '',
  description TEXT,
  order_index REAL NOT NULL DEFAULT 0,
  PRIMARY KEY (form_id, section_id)
);

CREATE TABLE IF NOT EXISTS questions (
  question_id TEXT NOT NULL,
  form_id TEXT NOT NULL REFERENCES forms(form_id) ON DELETE CASCADE,
  section_id TEXT,
  question_type TEXT NOT NULL,
  question_text TEXT NOT NULL DEFAULT '',
  description TEXT,
  required INTEGER NOT NULL DEFAULT 0,
  order_index REAL,
  position INTEGER NOT NULL,
  min_value INTEGER,
  max_value INTEGER,
  PRIMARY KEY (form_id, question_id)
);

CREATE TABLE IF NOT EXISTS question_options (
  form_id TEXT NOT NULL,
  question_id TEXT NOT NULL,
  option_text TEXT NOT NULL,
  order_index INTEGER NOT NULL,
  FOREIGN KEY (form_id, question_id) REFERENCES questions(form_id, question_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS deployments (
  form_id TEXT PRIMARY KEY REFERENCES forms(form_id) ON DELETE CASCADE,
  start_at TEXT NOT NULL,
  end_at TEXT NOT NULL,
  target_filters TEXT,
  deployment_status TEXT NOT NULL DEFAULT 'active',
  deployed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS assignments (
  form_id TEXT NOT NULL REFERENCES forms(form_id) ON DELETE CASCADE,
  user_id INTEGER NOT NULL,
  assigned_at TEXT NOT NULL,
  PRIMARY KEY (form_id, user_id)
);

CREATE TABLE IF NOT EXISTS responses (
  response_id TEXT PRIMARY KEY,
  form_id TEXT NOT NULL REFERENCES forms(form_id) ON DELETE CASCADE,
  respondent_id INTEGER NOT NULL,
  answers TEXT NOT NULL,
  submitted_at TEXT NOT NULL,
  UNIQUE (form_id, respondent_id)
);
"""
