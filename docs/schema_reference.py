"""
Database Schema Reference
=========================

This file provides a quick reference for all database tables and columns.
For actual SQLAlchemy models, see: vetscribe/db/models.py

"""

# ============================================================================
# API_KEYS - Stores API keys for authentication
# ============================================================================
#
# | Column      | Type          | Constraints                    |
# |-------------|---------------|--------------------------------|
# | id          | UUID          | PRIMARY KEY                    |
# | key_hash    | VARCHAR(255)  | NOT NULL, UNIQUE, INDEX        |
# | key_prefix  | VARCHAR(12)   | NOT NULL, INDEX                |
# | name        | VARCHAR(100)  | NOT NULL                       |
# | owner       | VARCHAR(100)  | NOT NULL, INDEX                |
# | is_active   | BOOLEAN       | NOT NULL, DEFAULT TRUE         |
# | created_at  | TIMESTAMP(TZ) | DEFAULT now()                  |
# | expires_at  | TIMESTAMP(TZ) | NULLABLE                       |
#
# `owner` is the clinician; consultations.owner_id holds the same value.


# ============================================================================
# PATIENTS - Clients and their pets
# ============================================================================
#
# | Column         | Type          | Constraints               |
# |----------------|---------------|---------------------------|
# | id             | UUID          | PRIMARY KEY               |
# | owner_id       | VARCHAR(100)  | NOT NULL, INDEX           |
# | patient_number | VARCHAR(50)   | NOT NULL                  |
# | client_name    | VARCHAR(200)  | NOT NULL                  |
# | pet_name       | VARCHAR(100)  | NULLABLE                  |
# | pet_breed      | VARCHAR(100)  | NULLABLE                  |
# | pet_age        | VARCHAR(50)   | NULLABLE                  |
# | created_at     | TIMESTAMP(TZ) | DEFAULT now()             |
#
# Relationships:
#   - consultations: ONE-TO-MANY -> consultations.patient_id


# ============================================================================
# CONSULTATIONS - One recorded consultation
# ============================================================================
#
# | Column             | Type                      | Constraints                          |
# |--------------------|---------------------------|--------------------------------------|
# | id                 | UUID                      | PRIMARY KEY                          |
# | owner_id           | VARCHAR(100)              | NOT NULL, INDEX                      |
# | patient_id         | UUID                      | NULLABLE, FK(patients.id), INDEX     |
# | client_name        | VARCHAR(200)              | NOT NULL (copied at creation)        |
# | patient_number     | VARCHAR(50)               | NOT NULL ("unknown" if ad hoc)       |
# | pet_name           | VARCHAR(100)              | NOT NULL ("patient" if ad hoc)       |
# | file_name          | VARCHAR(255)              | NOT NULL                             |
# | audio_path         | TEXT                      | NOT NULL (blob storage reference)    |
# | content_type       | VARCHAR(100)              | NULLABLE                             |
# | duration_seconds   | INTEGER                   | NULLABLE                             |
# | full_transcription | TEXT                      | NULLABLE (set by pipeline)           |
# | ai_soap_note       | TEXT                      | NULLABLE (set by pipeline)           |
# | final_soap_note    | TEXT                      | NULLABLE (user edit, else AI note)   |
# | is_finalized       | BOOLEAN                   | NOT NULL, DEFAULT FALSE              |
# | status             | ENUM(ConsultationStatus)  | NOT NULL, DEFAULT 'processing'       |
# | recorded_at        | TIMESTAMP(TZ)             | DEFAULT now()                        |
# | created_at         | TIMESTAMP(TZ)             | DEFAULT now()                        |
# | updated_at         | TIMESTAMP(TZ)             | DEFAULT now(), ON UPDATE now()       |
#
# Status transitions (pipeline only):
#   processing -> completed
#   processing -> failed


# ============================================================================
# ENUMS
# ============================================================================
#
# ConsultationStatus: processing, completed, failed
