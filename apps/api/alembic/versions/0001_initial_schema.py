"""Initial schema: territory, access control, wiki moderation, admin jobs.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17

Creates:
- paisos, nivells_administratius, municipis, entitats_eclesiastiques
- arxius, llibres, arxius_llibres, admin_closure
- usuaris, grups, usuaris_grups, politiques, politica_grants,
  usuaris_politiques, grups_politiques
- persones, cognoms, events_historics, wiki_changes
- admin_jobs, nivell_demografia, nivell_cognom_stats
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _moderation_columns() -> list[sa.Column]:
    return [
        sa.Column('moderacio_estat', sa.String(20), server_default='pendent', nullable=False),
        sa.Column('moderacio_motiu', sa.Text(), nullable=True),
        sa.Column('moderated_by', sa.Integer(), nullable=True),
        sa.Column('moderated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
    ]


def _level_fk(slot: int) -> sa.Column:
    return sa.Column(
        f'nivell_administratiu_id_{slot}',
        sa.Integer(),
        sa.ForeignKey('nivells_administratius.id', ondelete='SET NULL'),
        nullable=True,
    )


def upgrade() -> None:
    # ==========================================================================
    # Territory
    # ==========================================================================
    op.create_table(
        'paisos',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('codi_iso2', sa.String(2), nullable=True),
        sa.Column('nom', sa.String(255), nullable=False),
    )
    op.create_table(
        'nivells_administratius',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('pais_id', sa.Integer(), sa.ForeignKey('paisos.id', ondelete='SET NULL'), nullable=True),
        sa.Column('parent_id', sa.Integer(), sa.ForeignKey('nivells_administratius.id', ondelete='SET NULL'), nullable=True),
        sa.Column('nivel', sa.Integer(), server_default='1', nullable=False),
        sa.Column('nom', sa.String(255), nullable=False),
        sa.Column('tipus', sa.String(100), nullable=True),
        *_moderation_columns(),
    )
    op.create_index('idx_nivells_pais', 'nivells_administratius', ['pais_id'])

    op.create_table(
        'municipis',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('nom', sa.String(255), nullable=False),
        sa.Column('tipus', sa.String(100), nullable=True),
        sa.Column('codi_postal', sa.String(20), nullable=True),
        *[_level_fk(slot) for slot in range(1, 8)],
        *_moderation_columns(),
    )
    op.create_table(
        'entitats_eclesiastiques',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('nom', sa.String(255), nullable=False),
        sa.Column('tipus', sa.String(100), nullable=True),
        sa.Column('pais_id', sa.Integer(), sa.ForeignKey('paisos.id', ondelete='SET NULL'), nullable=True),
        sa.Column('parent_id', sa.Integer(), sa.ForeignKey('entitats_eclesiastiques.id', ondelete='SET NULL'), nullable=True),
        *_moderation_columns(),
    )

    # ==========================================================================
    # Archives and books
    # ==========================================================================
    op.create_table(
        'arxius',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('nom', sa.String(255), nullable=False),
        sa.Column('tipus', sa.String(100), nullable=True),
        sa.Column('adreca', sa.Text(), nullable=True),
        sa.Column('municipi_id', sa.Integer(), sa.ForeignKey('municipis.id', ondelete='SET NULL'), nullable=True),
        sa.Column('entitat_eclesiastica_id', sa.Integer(), sa.ForeignKey('entitats_eclesiastiques.id', ondelete='SET NULL'), nullable=True),
        *_moderation_columns(),
    )
    op.create_table(
        'llibres',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('titol', sa.String(255), nullable=False),
        sa.Column('tipus_llibre', sa.String(100), nullable=True),
        sa.Column('cronologia', sa.String(100), nullable=True),
        sa.Column('municipi_id', sa.Integer(), sa.ForeignKey('municipis.id', ondelete='SET NULL'), nullable=True),
        sa.Column('arquebisbat_id', sa.Integer(), sa.ForeignKey('entitats_eclesiastiques.id', ondelete='SET NULL'), nullable=True),
        *_moderation_columns(),
    )
    op.create_table(
        'arxius_llibres',
        sa.Column('arxiu_id', sa.Integer(), sa.ForeignKey('arxius.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('llibre_id', sa.Integer(), sa.ForeignKey('llibres.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('signatura', sa.String(100), nullable=True),
    )

    # ==========================================================================
    # admin_closure (materialized municipality ancestors)
    # ==========================================================================
    op.create_table(
        'admin_closure',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('descendant_municipi_id', sa.Integer(), sa.ForeignKey('municipis.id', ondelete='CASCADE'), nullable=False),
        sa.Column('ancestor_type', sa.String(20), nullable=False),
        sa.Column('ancestor_id', sa.Integer(), nullable=False),
        sa.UniqueConstraint('descendant_municipi_id', 'ancestor_type', 'ancestor_id', name='uq_admin_closure_entry'),
    )
    op.create_index('idx_admin_closure_ancestor', 'admin_closure', ['ancestor_type', 'ancestor_id'])

    # ==========================================================================
    # Users, groups and policies
    # ==========================================================================
    op.create_table(
        'usuaris',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('usuari', sa.String(100), nullable=False, unique=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('actiu', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('permissions_version', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        'grups',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('nom', sa.String(100), nullable=False, unique=True),
        sa.Column('descripcio', sa.Text(), nullable=True),
    )
    op.create_table(
        'usuaris_grups',
        sa.Column('usuari_id', sa.Integer(), sa.ForeignKey('usuaris.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('grup_id', sa.Integer(), sa.ForeignKey('grups.id', ondelete='CASCADE'), primary_key=True),
    )
    op.create_table(
        'politiques',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('nom', sa.String(100), nullable=False, unique=True),
        sa.Column('descripcio', sa.Text(), nullable=True),
        sa.Column('permisos', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        'politica_grants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('politica_id', sa.Integer(), sa.ForeignKey('politiques.id', ondelete='CASCADE'), nullable=False),
        sa.Column('perm_key', sa.String(100), nullable=False),
        sa.Column('scope_type', sa.String(40), nullable=False),
        sa.Column('scope_id', sa.Integer(), nullable=True),
        sa.Column('include_children', sa.Boolean(), server_default=sa.false(), nullable=False),
    )
    op.create_index('idx_politica_grants_politica', 'politica_grants', ['politica_id'])
    op.create_index('idx_politica_grants_perm', 'politica_grants', ['perm_key'])
    op.create_table(
        'usuaris_politiques',
        sa.Column('usuari_id', sa.Integer(), sa.ForeignKey('usuaris.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('politica_id', sa.Integer(), sa.ForeignKey('politiques.id', ondelete='CASCADE'), primary_key=True),
    )
    op.create_table(
        'grups_politiques',
        sa.Column('grup_id', sa.Integer(), sa.ForeignKey('grups.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('politica_id', sa.Integer(), sa.ForeignKey('politiques.id', ondelete='CASCADE'), primary_key=True),
    )

    # ==========================================================================
    # Wiki entities and change queue
    # ==========================================================================
    op.create_table(
        'persones',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('nom', sa.String(255), nullable=False),
        sa.Column('cognom1', sa.String(255), nullable=True),
        sa.Column('cognom2', sa.String(255), nullable=True),
        sa.Column('data_naixement', sa.String(40), nullable=True),
        sa.Column('municipi_naixement_id', sa.Integer(), sa.ForeignKey('municipis.id', ondelete='SET NULL'), nullable=True),
        sa.Column('ofici', sa.String(255), nullable=True),
        *_moderation_columns(),
    )
    op.create_table(
        'cognoms',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('forma', sa.String(255), nullable=False, unique=True),
        sa.Column('origen', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
    )
    op.create_table(
        'events_historics',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('titol', sa.String(255), nullable=False),
        sa.Column('descripcio', sa.Text(), nullable=True),
        sa.Column('data_inici', sa.String(40), nullable=True),
        sa.Column('municipi_id', sa.Integer(), sa.ForeignKey('municipis.id', ondelete='SET NULL'), nullable=True),
        *_moderation_columns(),
    )
    op.create_table(
        'wiki_changes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('object_type', sa.String(40), nullable=False),
        sa.Column('object_id', sa.Integer(), nullable=False),
        sa.Column('change_type', sa.String(20), server_default='edit', nullable=False),
        sa.Column('changed_by', sa.Integer(), sa.ForeignKey('usuaris.id', ondelete='SET NULL'), nullable=True),
        sa.Column('moderacio_estat', sa.String(20), server_default='pendent', nullable=False),
        sa.Column('metadata', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('moderated_by', sa.Integer(), nullable=True),
        sa.Column('moderated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('moderated_motiu', sa.Text(), nullable=True),
    )
    op.create_index('idx_wiki_changes_object', 'wiki_changes', ['object_type', 'object_id'])
    op.create_index('idx_wiki_changes_estat', 'wiki_changes', ['moderacio_estat'])

    # ==========================================================================
    # Admin jobs and level aggregates
    # ==========================================================================
    op.create_table(
        'admin_jobs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('kind', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), server_default='queued', nullable=False),
        sa.Column('progress_done', sa.Integer(), server_default='0', nullable=False),
        sa.Column('progress_total', sa.Integer(), server_default='0', nullable=False),
        sa.Column('payload_json', sa.Text(), nullable=True),
        sa.Column('result_json', sa.Text(), nullable=True),
        sa.Column('error_text', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('usuaris.id', ondelete='SET NULL'), nullable=True),
    )
    op.create_index('idx_admin_jobs_kind_status', 'admin_jobs', ['kind', 'status'])
    op.create_index('idx_admin_jobs_created', 'admin_jobs', ['created_at'])

    op.create_table(
        'nivell_demografia',
        sa.Column('nivell_id', sa.Integer(), sa.ForeignKey('nivells_administratius.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('municipis_total', sa.Integer(), server_default='0', nullable=False),
        sa.Column('arxius_total', sa.Integer(), server_default='0', nullable=False),
        sa.Column('llibres_total', sa.Integer(), server_default='0', nullable=False),
        sa.Column('persones_total', sa.Integer(), server_default='0', nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        'nivell_cognom_stats',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('nivell_id', sa.Integer(), sa.ForeignKey('nivells_administratius.id', ondelete='CASCADE'), nullable=False),
        sa.Column('cognom', sa.String(255), nullable=False),
        sa.Column('total', sa.Integer(), server_default='0', nullable=False),
        sa.UniqueConstraint('nivell_id', 'cognom', name='uq_nivell_cognom_stats'),
    )


def downgrade() -> None:
    for table in (
        'nivell_cognom_stats',
        'nivell_demografia',
        'admin_jobs',
        'wiki_changes',
        'events_historics',
        'cognoms',
        'persones',
        'grups_politiques',
        'usuaris_politiques',
        'politica_grants',
        'politiques',
        'usuaris_grups',
        'grups',
        'usuaris',
        'admin_closure',
        'arxius_llibres',
        'llibres',
        'arxius',
        'entitats_eclesiastiques',
        'municipis',
        'nivells_administratius',
        'paisos',
    ):
        op.drop_table(table)
