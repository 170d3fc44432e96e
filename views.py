"""Read-side views: dashboard stats and map, my-trees gallery and map, leaderboard.

Every view gets its data from ``ReconciliationEngine.read`` and never from
the cache directly, so they all see the same snapshot rules.
"""
import logging

import pandas as pd

import config
from ownership import session_owns
from records import Scope

logger = logging.getLogger(__name__)

MEDALS = ('gold', 'silver', 'bronze')


def _frame(records):
    return pd.DataFrame([r.to_dict() for r in records])


def _named_species(df):
    species = df['species'].fillna('').astype(str).str.strip()
    return species[(species != '') & (species != 'Unknown')]


def _bounds(points):
    if not points:
        return None
    lats = [p[0] for p in points]
    lngs = [p[1] for p in points]
    return (min(lats), min(lngs)), (max(lats), max(lngs))


class View:
    scope = Scope.ALL

    def __init__(self, engine, broadcaster=None):
        self.engine = engine
        self.records = []
        self.data = None
        self._refreshing = False
        self.broadcaster = broadcaster
        if broadcaster is not None:
            broadcaster.subscribe(self.on_change)

    def on_change(self, scope):
        if scope is self.scope and not self._refreshing:
            self.refresh()

    def refresh(self):
        self._refreshing = True
        try:
            records = self.engine.read(self.scope)
        finally:
            self._refreshing = False
        self.records = list(records)
        self.data = self.derive(self.records)
        return self.data

    def include(self, record, drop=None):
        """Show a record that was only saved locally, replacing ``drop`` if given."""
        gone = {record.id, drop}
        self.records = [r for r in self.records if r.id not in gone] + [record]
        self.data = self.derive(self.records)
        return self.data

    def derive(self, records):
        raise NotImplementedError

    def close(self):
        if self.broadcaster is not None:
            self.broadcaster.unsubscribe(self.on_change)


class DashboardStats(View):
    scope = Scope.ALL

    def derive(self, records):
        if not records:
            return {'total': 0, 'verified': 0, 'species': 0, 'co2_offset': '0.0 kg'}
        df = _frame(records)
        verified = int(df['verified'].astype(bool).sum())
        return {
            'total': len(df),
            'verified': verified,
            'species': int(_named_species(df).nunique()),
            'co2_offset': f"{verified * config.CO2_PER_TREE:.1f} kg",
        }


def _marker(record):
    return {
        'id': record.id,
        'lat': record.latitude,
        'lng': record.longitude,
        'color': 'green' if record.verified else 'orange',
        'popup': {
            'species': record.species or 'Unnamed Tree',
            'planter': record.display_planter,
            'location': record.location or 'Unknown',
            'status': 'Verified' if record.verified else 'Pending Verification',
            'planted': record.planted_at,
        },
    }


class DashboardMap(View):
    scope = Scope.ALL

    def derive(self, records):
        markers = [_marker(r) for r in records if r.has_coords]
        bounds = _bounds([(m['lat'], m['lng']) for m in markers])
        placeholder = None
        if not markers:
            lat, lng = config.DEFAULT_MAP_VIEW
            placeholder = {'lat': lat, 'lng': lng, 'text': 'No trees yet. Add your first tree to see it here!'}
        return {
            'markers': markers,
            'bounds': bounds,
            'placeholder': placeholder,
            'zoom': config.DEFAULT_MAP_ZOOM,
        }


class MyTreesGallery(View):
    scope = Scope.MINE

    def __init__(self, engine, session, broadcaster=None):
        self.session = session
        super().__init__(engine, broadcaster)

    def derive(self, records):
        ordered = sorted(records, key=lambda r: r.planted_at or '', reverse=True)
        return [
            {
                'id': r.id,
                'species': r.species or 'Unnamed Tree',
                'planter': r.display_planter,
                'location': r.location or '',
                'photo': r.photo_ref,
                'verified': r.verified,
                'status': 'AI Verified' if r.verified else 'Unverified',
                'confidence': f"{r.confidence * 100:.1f}%",
                'can_delete': session_owns(self.session, r),
                'tentative': r.is_tentative,
            }
            for r in ordered
        ]

    def delete(self, tree_id):
        outcome = self.engine.delete(tree_id)
        logger.info(f"Delete {tree_id}: {outcome.notice}")
        return outcome


class MyTreesMap(View):
    scope = Scope.MINE

    def derive(self, records):
        markers = [
            {'id': r.id, 'lat': r.latitude, 'lng': r.longitude,
             'popup': f"{r.species} / {r.display_planter} / {r.location or ''}"}
            for r in records if r.verified and r.has_coords
        ]
        return {'markers': markers, 'zoom': config.MY_TREES_MAP_ZOOM}

    def center_on_my_trees(self):
        """Bounds of the verified markers, or None when there is nothing to center on."""
        data = self.data if self.data is not None else self.refresh()
        bounds = _bounds([(m['lat'], m['lng']) for m in data['markers']])
        if bounds is None:
            logger.info("No trees to center")
        return bounds


class Leaderboard(View):
    scope = Scope.ALL

    def derive(self, records):
        if not records:
            return {'rows': [], 'total_users': 0, 'total_trees': 0, 'total_species': 0}
        df = _frame(records)
        planter = df['uploadedBy'].where(df['uploadedBy'].notna() & (df['uploadedBy'] != ''), df['planterName'])
        df['planter'] = planter.fillna('Anonymous Planter').astype(str).str.strip()
        df.loc[df['planter'] == '', 'planter'] = 'Anonymous Planter'
        df['verified'] = df['verified'].astype(bool)
        named = _named_species(df)
        df['named_species'] = named.reindex(df.index)

        grouped = df.groupby('planter', sort=False).agg(
            count=('id', 'size'),
            verified=('verified', 'sum'),
            species_count=('named_species', 'nunique'),
        )
        grouped = grouped.sort_values('count', ascending=False, kind='mergesort')

        rows = []
        for rank, (name, row) in enumerate(grouped.iterrows(), start=1):
            rows.append({
                'rank': rank,
                'name': name,
                'count': int(row['count']),
                'verified': int(row['verified']),
                'species_count': int(row['species_count']),
                'medal': MEDALS[rank - 1] if rank <= len(MEDALS) else None,
            })
        return {
            'rows': rows,
            'total_users': len(rows),
            'total_trees': len(df),
            'total_species': int(named.nunique()),
        }
