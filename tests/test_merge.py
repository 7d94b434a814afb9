"""
Tests for the merge module.
"""

import logging

import numpy as np
import pytest

from globalbr.config import FieldNamesConfig, GridConfig
from globalbr.errors import DataUnavailable, GridMismatch, TropopauseLevelError
from globalbr.io import FieldStore
from globalbr.merge import (
    PPBV_TO_PPTV,
    check_tropopause_level,
    merge_fields,
    retrieve,
    stratospheric_mask,
)
from globalbr.state import BromineState


def _two_column_store(br_trop, br_strat, bro_trop=None, bro_strat=None, nz=4):
    """Store for a 2 x 1 x nz grid using the pTOMCAT branch names."""
    br_trop = np.asarray(br_trop, dtype=float)[:, np.newaxis, :]
    br_strat = np.asarray(br_strat, dtype=float)[:, np.newaxis, :]
    if bro_trop is None:
        bro_trop = br_trop / 10.0
    else:
        bro_trop = np.asarray(bro_trop, dtype=float)[:, np.newaxis, :]
    if bro_strat is None:
        bro_strat = br_strat / 10.0
    else:
        bro_strat = np.asarray(bro_strat, dtype=float)[:, np.newaxis, :]
    return FieldStore({
        "Br_TOMCAT": br_trop,
        "BrO_TOMCAT": bro_trop,
        "Br_GMI": br_strat,
        "BrO_GMI": bro_strat,
        "JBrO": np.ones((2, 1, nz)),
    })


class TestTwoColumnExample:
    """Tests on a two-column grid with hand-computed results."""

    def test_reference_columns(self):
        """Test merged Br for tropopause levels 2 and 3."""
        grid = GridConfig(nx=2, ny=1, nz=4)
        store = _two_column_store(
            br_trop=[[1, 1, 1, 1], [2, 2, 2, 2]],
            br_strat=[[0, 0, 5, 5], [0, 0, 0, 3]],
        )
        state = BromineState(grid)

        fields = retrieve(state, store, 1, np.array([[2], [3]]), use_gc_bromine=False)

        np.testing.assert_array_equal(fields.br[0, 0, :], [1, 1, 5, 5])
        np.testing.assert_array_equal(fields.br[1, 0, :], [2, 2, 2, 3])

    def test_stratospheric_values_ignored_below_tropopause(self):
        """Test large stratospheric values below the tropopause are not used."""
        grid = GridConfig(nx=2, ny=1, nz=4)
        store = _two_column_store(
            br_trop=[[1, 1, 1, 1], [2, 2, 2, 2]],
            br_strat=[[9, 9, 9, 9], [9, 9, 9, 9]],
        )
        state = BromineState(grid)

        fields = retrieve(state, store, 1, np.array([[4], [1]]), use_gc_bromine=False)

        np.testing.assert_array_equal(fields.br[0, 0, :], [1, 1, 1, 9])
        np.testing.assert_array_equal(fields.br[1, 0, :], [9, 9, 9, 9])

    def test_bro_follows_br_comparison(self):
        """Test BrO selection uses the Br mask, not its own comparison."""
        grid = GridConfig(nx=2, ny=1, nz=4)
        store = _two_column_store(
            br_trop=[[1, 1, 1, 1], [5, 5, 5, 5]],
            br_strat=[[3, 3, 3, 3], [2, 2, 2, 2]],
            bro_trop=[[0.8, 0.8, 0.8, 0.8], [0.1, 0.1, 0.1, 0.1]],
            bro_strat=[[0.2, 0.2, 0.2, 0.2], [0.9, 0.9, 0.9, 0.9]],
        )
        state = BromineState(grid)

        fields = retrieve(state, store, 1, np.array([[1], [1]]), use_gc_bromine=False)

        # Column 1: GMI Br wins, so the smaller GMI BrO is taken
        np.testing.assert_allclose(fields.bro[0, 0, :], 0.2, rtol=1e-6)
        # Column 2: tropospheric Br wins, so the smaller tropospheric BrO is kept
        np.testing.assert_allclose(fields.bro[1, 0, :], 0.1, rtol=1e-6)

    def test_equal_values_keep_tropospheric(self):
        """Test ties keep the tropospheric estimate."""
        grid = GridConfig(nx=2, ny=1, nz=4)
        store = _two_column_store(
            br_trop=[[2, 2, 2, 2], [2, 2, 2, 2]],
            br_strat=[[2, 2, 2, 2], [2, 2, 2, 2]],
            bro_trop=[[1, 1, 1, 1], [1, 1, 1, 1]],
            bro_strat=[[7, 7, 7, 7], [7, 7, 7, 7]],
        )
        state = BromineState(grid)

        fields = retrieve(state, store, 1, np.array([[1], [1]]), use_gc_bromine=False)

        np.testing.assert_array_equal(fields.bro, 1.0)


def _tropospheric(random_fields, species, use_gc):
    """Expected tropospheric estimate in pptv at buffer precision."""
    if use_gc:
        return random_fields[f"{species}_GC"].astype(np.float32).astype(np.float64) * PPBV_TO_PPTV
    return random_fields[f"{species}_TOMCAT"].astype(np.float32).astype(np.float64)


@pytest.mark.parametrize("use_gc", [True, False], ids=["geos-chem", "ptomcat"])
class TestMergeProperties:
    """Property tests on random fields for both tropospheric sources."""

    def test_below_tropopause_is_tropospheric(
        self, small_grid, store, random_fields, tropopause_level, use_gc
    ):
        """Test merged fields equal the tropospheric estimate below the tropopause."""
        state = BromineState(small_grid)
        fields = retrieve(state, store, 7, tropopause_level, use_gc_bromine=use_gc)

        br_trop = _tropospheric(random_fields, "Br", use_gc)
        bro_trop = _tropospheric(random_fields, "BrO", use_gc)
        for i in range(small_grid.nx):
            for j in range(small_grid.ny):
                below = slice(0, tropopause_level[i, j] - 1)
                np.testing.assert_array_equal(fields.br[i, j, below], br_trop[i, j, below])
                np.testing.assert_array_equal(fields.bro[i, j, below], bro_trop[i, j, below])

    def test_above_tropopause_is_max(
        self, small_grid, store, random_fields, tropopause_level, use_gc
    ):
        """Test merged Br is the larger pptv estimate at and above the tropopause."""
        state = BromineState(small_grid)
        fields = retrieve(state, store, 7, tropopause_level, use_gc_bromine=use_gc)

        br_trop = _tropospheric(random_fields, "Br", use_gc)
        bro_trop = _tropospheric(random_fields, "BrO", use_gc)
        br_strat = random_fields["Br_GMI"].astype(np.float32).astype(np.float64)
        bro_strat = random_fields["BrO_GMI"].astype(np.float32).astype(np.float64)
        for i in range(small_grid.nx):
            for j in range(small_grid.ny):
                above = slice(tropopause_level[i, j] - 1, None)
                np.testing.assert_array_equal(
                    fields.br[i, j, above],
                    np.maximum(br_trop[i, j, above], br_strat[i, j, above]),
                )
                use_strat = br_strat[i, j, above] > br_trop[i, j, above]
                np.testing.assert_array_equal(
                    fields.bro[i, j, above],
                    np.where(use_strat, bro_strat[i, j, above], bro_trop[i, j, above]),
                )

    def test_mask_mixes_sources_after_conversion(
        self, small_grid, store, random_fields, use_gc
    ):
        """Test both sources win somewhere once compared in pptv."""
        state = BromineState(small_grid)
        top = np.ones(small_grid.horizontal_shape, dtype=int)
        fields = retrieve(state, store, 7, top, use_gc_bromine=use_gc)

        br_trop = _tropospheric(random_fields, "Br", use_gc)
        br_strat = random_fields["Br_GMI"].astype(np.float32).astype(np.float64)
        from_strat = fields.br == br_strat
        assert from_strat.any()
        assert (fields.br == br_trop)[~from_strat].all()
        assert (~from_strat).any()

    def test_merged_never_below_tropospheric(self, small_grid, store, tropopause_level, use_gc):
        """Test merged Br is never smaller than the tropospheric estimate."""
        state = BromineState(small_grid)
        fields = retrieve(state, store, 7, tropopause_level, use_gc_bromine=use_gc)
        assert np.all(fields.br >= state.br_trop)


class TestUnitConversion:
    """Tests for tropospheric source selection and units."""

    def test_gc_branch_converts_ppbv_to_pptv(self, small_grid, store, random_fields, tropopause_level):
        """Test GEOS-Chem values are multiplied by exactly 1000."""
        state = BromineState(small_grid)
        retrieve(state, store, 7, tropopause_level, use_gc_bromine=True)

        raw_br = random_fields["Br_GC"].astype(np.float32).astype(np.float64)
        raw_bro = random_fields["BrO_GC"].astype(np.float32).astype(np.float64)
        np.testing.assert_array_equal(state.br_trop, raw_br * 1000.0)
        np.testing.assert_array_equal(state.bro_trop, raw_bro * 1000.0)
        assert PPBV_TO_PPTV == 1000.0

    def test_tomcat_branch_unchanged(self, small_grid, store, random_fields, tropopause_level):
        """Test pTOMCAT values are used as-is."""
        state = BromineState(small_grid)
        retrieve(state, store, 7, tropopause_level, use_gc_bromine=False)

        np.testing.assert_array_equal(
            state.br_trop, random_fields["Br_TOMCAT"].astype(np.float32)
        )
        np.testing.assert_array_equal(
            state.bro_trop, random_fields["BrO_TOMCAT"].astype(np.float32)
        )

    def test_gmi_never_converted(self, small_grid, store, random_fields, tropopause_level):
        """Test stratospheric estimates are stored unconverted in both branches."""
        for use_gc in (True, False):
            state = BromineState(small_grid)
            retrieve(state, store, 7, tropopause_level, use_gc_bromine=use_gc)
            np.testing.assert_array_equal(
                state.br_strat, random_fields["Br_GMI"].astype(np.float32)
            )
            np.testing.assert_array_equal(
                state.bro_strat, random_fields["BrO_GMI"].astype(np.float32)
            )

    def test_custom_field_names(self, small_grid, random_fields, tropopause_level):
        """Test field names can be remapped."""
        renamed = {f"{name}_v2": data for name, data in random_fields.items()}
        names = FieldNamesConfig(**{
            key: f"{value}_v2" for key, value in FieldNamesConfig().model_dump().items()
        })
        state = BromineState(small_grid)

        fields = retrieve(
            state, FieldStore(renamed), 7, tropopause_level, field_names=names
        )

        assert state.sources["br_trop"] == "Br_GC_v2"
        assert fields.use_gc_bromine


class TestPhotolysis:
    """Tests for the J-BrO copy."""

    def test_jbro_truncated(self, small_grid, store, random_fields, tropopause_level):
        """Test J-BrO holds the raw field on the lowest llchem_fix levels."""
        state = BromineState(small_grid)
        fields = retrieve(state, store, 7, tropopause_level)

        assert fields.j_bro.shape == (4, 3, small_grid.llchem)
        nfix = small_grid.llchem_fix
        np.testing.assert_array_equal(
            fields.j_bro[:, :, :nfix],
            random_fields["JBrO"][:, :, :nfix].astype(np.float32),
        )
        # Levels between llchem_fix and llchem are left at zero
        assert np.all(fields.j_bro[:, :, nfix:] == 0.0)

    def test_jbro_not_merged(self, small_grid, random_fields, tropopause_level):
        """Test J-BrO is copied regardless of the Br comparison."""
        random_fields["Br_GMI"] = np.full(small_grid.shape, 1.0e6)
        state = BromineState(small_grid)
        fields = retrieve(state, FieldStore(random_fields), 7, tropopause_level)

        nfix = small_grid.llchem_fix
        np.testing.assert_array_equal(
            fields.j_bro[:, :, :nfix],
            random_fields["JBrO"][:, :, :nfix].astype(np.float32),
        )


class TestFailures:
    """Tests for retrieval errors."""

    def test_missing_field(self, small_grid, random_fields, tropopause_level):
        """Test a missing field raises DataUnavailable naming the field and routine."""
        del random_fields["Br_GMI"]
        state = BromineState(small_grid)

        with pytest.raises(DataUnavailable) as excinfo:
            retrieve(state, FieldStore(random_fields), 7, tropopause_level)

        assert excinfo.value.field_name == "Br_GMI"
        assert "Br_GMI" in str(excinfo.value)
        assert "retrieve" in str(excinfo.value)
        assert not state.initialized
        assert state.br_merge is None

    def test_missing_other_branch_is_fine(self, small_grid, random_fields, tropopause_level):
        """Test fields of the unused branch are not required."""
        del random_fields["Br_TOMCAT"]
        del random_fields["BrO_TOMCAT"]
        state = BromineState(small_grid)

        retrieve(state, FieldStore(random_fields), 7, tropopause_level, use_gc_bromine=True)

        assert state.initialized

    def test_failed_retrieval_leaves_previous_results(self, small_grid, random_fields, tropopause_level):
        """Test a failed retrieval does not half-write the buffers."""
        state = BromineState(small_grid)
        retrieve(state, FieldStore(random_fields), 7, tropopause_level)
        before = state.br_merge.copy()

        changed = {name: data * 2.0 for name, data in random_fields.items()}
        del changed["JBrO"]
        with pytest.raises(DataUnavailable):
            retrieve(state, FieldStore(changed), 8, tropopause_level)

        np.testing.assert_array_equal(state.br_merge, before)
        assert state.month == 7

    def test_wrong_field_shape(self, small_grid, random_fields, tropopause_level):
        """Test a mis-shaped field raises GridMismatch."""
        random_fields["BrO_GMI"] = np.zeros((4, 3, 5))
        state = BromineState(small_grid)

        with pytest.raises(GridMismatch):
            retrieve(state, FieldStore(random_fields), 7, tropopause_level)

    def test_jbro_too_few_levels(self, small_grid, random_fields, tropopause_level):
        """Test a J-BrO field shallower than llchem_fix raises GridMismatch."""
        random_fields["JBrO"] = np.zeros((4, 3, 2))
        state = BromineState(small_grid)

        with pytest.raises(GridMismatch):
            retrieve(state, FieldStore(random_fields), 7, tropopause_level)

    def test_invalid_month(self, small_grid, store, tropopause_level):
        """Test months outside 1..12 are rejected."""
        with pytest.raises(ValueError):
            retrieve(BromineState(small_grid), store, 13, tropopause_level)


class TestTropopauseLevel:
    """Tests for tropopause level validation."""

    def test_valid(self, small_grid):
        tpl = check_tropopause_level(np.full((4, 3), 6), small_grid)
        assert tpl.dtype == np.int64

    def test_integral_floats_accepted(self, small_grid):
        tpl = check_tropopause_level(np.full((4, 3), 3.0), small_grid)
        assert np.all(tpl == 3)

    @pytest.mark.parametrize("value", [0, 7, -1])
    def test_out_of_range(self, small_grid, value):
        with pytest.raises(TropopauseLevelError):
            check_tropopause_level(np.full((4, 3), value), small_grid)

    def test_wrong_shape(self, small_grid):
        with pytest.raises(TropopauseLevelError):
            check_tropopause_level(np.full((3, 4), 2), small_grid)

    def test_fractional_levels(self, small_grid):
        with pytest.raises(TropopauseLevelError):
            check_tropopause_level(np.full((4, 3), 2.5), small_grid)


class TestMergeHelpers:
    """Tests for the vectorised merge helpers."""

    def test_mask_respects_tropopause(self):
        """Test no cell below the tropopause is selected."""
        br_trop = np.zeros((1, 1, 5))
        br_strat = np.ones((1, 1, 5))
        mask = stratospheric_mask(br_trop, br_strat, np.array([[3]]))
        np.testing.assert_array_equal(mask[0, 0], [False, False, True, True, True])

    def test_merge_fields_out(self):
        """Test merge_fields writes into the given buffer."""
        trop = np.array([1.0, 2.0, 3.0])
        strat = np.array([9.0, 9.0, 9.0])
        out = np.zeros(3)
        result = merge_fields(trop, strat, np.array([False, True, False]), out=out)
        assert result is out
        np.testing.assert_array_equal(out, [1.0, 9.0, 3.0])


class TestOutputs:
    """Tests for the returned fields."""

    def test_outputs_read_only(self, small_grid, store, tropopause_level):
        """Test callers cannot write through the returned views."""
        state = BromineState(small_grid)
        fields = retrieve(state, store, 7, tropopause_level)

        with pytest.raises(ValueError):
            fields.br[0, 0, 0] = 1.0
        # The owned buffer itself stays writable
        assert state.br_merge.flags.writeable

    def test_store_not_mutated(self, small_grid, store, tropopause_level):
        """Test the retrieval leaves store contents untouched."""
        before = {name: store.get_field(name).copy() for name in store.names}
        retrieve(BromineState(small_grid), store, 7, tropopause_level)
        for name, data in before.items():
            np.testing.assert_array_equal(store.get_field(name), data)

    def test_float32_precision(self, store, tropopause_level):
        """Test output precision follows the grid configuration."""
        grid = GridConfig(nx=4, ny=3, nz=6, llchem=4, precision="float32")
        fields = retrieve(BromineState(grid), store, 7, tropopause_level)
        assert fields.br.dtype == np.float32
        assert fields.j_bro.dtype == np.float32

    def test_summary(self, small_grid, store, tropopause_level):
        """Test the per-level summary table."""
        fields = retrieve(BromineState(small_grid), store, 7, tropopause_level)
        summary = fields.get_summary()

        assert len(summary) == small_grid.nz
        assert list(summary["level"]) == [1, 2, 3, 4, 5, 6]
        assert summary["strat_fraction"].iloc[-1] == pytest.approx(1.0)
        assert np.all(summary["br_max"] >= summary["br_mean"])

    def test_views_track_later_retrievals(self, small_grid, random_fields, tropopause_level):
        """Test returned arrays share the state buffers until the next retrieval."""
        state = BromineState(small_grid)
        july = retrieve(state, FieldStore(random_fields, month=7), 7, tropopause_level)
        kept = july.br.copy()
        assert np.shares_memory(july.br, state.br_merge)

        doubled = {name: data * 2.0 for name, data in random_fields.items()}
        august = retrieve(state, FieldStore(doubled, month=8), 8, tropopause_level)

        np.testing.assert_array_equal(july.br, august.br)
        assert not np.array_equal(july.br, kept)
        assert july.month == 7
        assert august.month == 8


class TestStoreMonth:
    """Tests for the month carried by the field store."""

    def test_mismatched_month_warns(self, small_grid, store, tropopause_level, caplog):
        """Test retrieving a store under another month logs a warning."""
        with caplog.at_level(logging.WARNING, logger="globalbr.merge"):
            fields = retrieve(BromineState(small_grid), store, 8, tropopause_level)

        assert fields.month == 8
        assert "holds month 07" in caplog.text
        assert "month 08" in caplog.text

    def test_matching_month_silent(self, small_grid, store, tropopause_level, caplog):
        with caplog.at_level(logging.WARNING, logger="globalbr.merge"):
            retrieve(BromineState(small_grid), store, 7, tropopause_level)
        assert not caplog.records

    def test_untagged_store_silent(self, small_grid, random_fields, tropopause_level, caplog):
        """Test a store without a month is used for any month."""
        with caplog.at_level(logging.WARNING, logger="globalbr.merge"):
            retrieve(BromineState(small_grid), FieldStore(random_fields), 3, tropopause_level)
        assert not caplog.records
