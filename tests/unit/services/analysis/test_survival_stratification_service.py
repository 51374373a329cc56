"""
Unit tests for SurvivalStratificationService.

Tests group assignment for every stratification mode, Kaplan-Meier fitting,
the omnibus log-rank comparison and the batch gene screen.
"""

import logging

import anndata
import numpy as np
import pandas as pd
import pytest

from survstrat.config.analysis_config import SurvivalAnalysisConfig
from survstrat.core.analysis_ir import AnalysisStep
from survstrat.core.exceptions import (
    AmbiguousFeatureError,
    ConfigurationError,
    FeatureNotFoundError,
    InsufficientDataError,
    SurvivalStratificationError,
)
from survstrat.core.schemas.stratification import StratifyMode, SurvivalComparison
from survstrat.services.analysis.survival_stratification_service import (
    SurvivalStratificationService,
)


class TestAssignGroups:
    """Bucket thresholds and labels."""

    @pytest.fixture
    def service(self):
        return SurvivalStratificationService()

    def test_three_groups_on_ordinal_values(self, service, ordinal_adata):
        assignment = service.assign_groups(
            ordinal_adata, "expr", genes="GENE_A", group_count=3
        )

        labels = assignment.labels
        assert labels[["s1", "s2", "s3"]].tolist() == ["Low GENE_A"] * 3
        assert labels[["s4", "s5", "s6"]].tolist() == ["Medium GENE_A"] * 3
        assert labels[["s7", "s8", "s9", "s10"]].tolist() == ["High GENE_A"] * 4
        assert assignment.label_order == ["High GENE_A", "Medium GENE_A", "Low GENE_A"]
        assert assignment.thresholds["GENE_A"]["lower"] == pytest.approx(3.97)
        assert assignment.thresholds["GENE_A"]["upper"] == pytest.approx(6.94)

    def test_tertiles_partition_non_missing_samples(self, service, survival_adata):
        assignment = service.assign_groups(
            survival_adata, "expr", genes=["GENE_3"], group_count=3
        )

        assert assignment.excluded == []
        assert sum(assignment.group_sizes.values()) == survival_adata.n_obs
        assert set(assignment.labels) == {"High GENE_3", "Medium GENE_3", "Low GENE_3"}

        values = pd.Series(survival_adata[:, "GENE_3"].X.ravel(), index=survival_adata.obs_names)
        thresholds = assignment.thresholds["GENE_3"]
        high = assignment.labels == "High GENE_3"
        low = assignment.labels == "Low GENE_3"
        assert (values[high] >= thresholds["upper"]).all()
        assert (values[low] <= thresholds["lower"]).all()

    def test_median_split_sends_ties_high(self, service):
        obs = pd.DataFrame(index=[f"s{i}" for i in range(5)])
        adata = anndata.AnnData(
            X=np.array([[1.0], [2.0], [2.0], [2.0], [3.0]]),
            obs=obs,
            var=pd.DataFrame(index=["GENE_T"]),
        )

        assignment = service.assign_groups(adata, "expr", genes="GENE_T")

        assert assignment.thresholds["GENE_T"] == {"median": 2.0}
        assert assignment.labels.tolist() == [
            "Low GENE_T",
            "High GENE_T",
            "High GENE_T",
            "High GENE_T",
            "High GENE_T",
        ]

    def test_median_split_on_ordinal_values(self, service, ordinal_adata):
        assignment = service.assign_groups(ordinal_adata, "expr", genes="GENE_A")

        assert assignment.group_sizes == {"High GENE_A": 5, "Low GENE_A": 5}
        assert assignment.labels["s6"] == "High GENE_A"
        assert assignment.labels["s5"] == "Low GENE_A"

    def test_extremes_split_drops_middle(self, service, ordinal_adata):
        assignment = service.assign_groups(
            ordinal_adata, "expr", genes="GENE_A", group_count=2, split="extremes"
        )

        assert assignment.group_sizes == {"High GENE_A": 4, "Low GENE_A": 3}
        assert sorted(assignment.excluded) == ["s4", "s5", "s6"]
        assert "Medium GENE_A" not in assignment.label_order

    def test_coinciding_percentiles_assign_high(self, service):
        adata = anndata.AnnData(
            X=np.full((6, 1), 4.0),
            obs=pd.DataFrame(index=[f"s{i}" for i in range(6)]),
            var=pd.DataFrame(index=["FLAT"]),
        )

        assignment = service.assign_groups(adata, "expr", genes="FLAT", group_count=3)

        assert set(assignment.labels) == {"High FLAT"}

    def test_two_axis_labels_follow_row_major_order(self, service, survival_adata, survival_scores):
        assignment = service.assign_groups(
            survival_adata,
            "score_expr",
            scores=survival_scores[["NK_score"]],
            genes=["GENE_0"],
        )

        assert assignment.label_order == [
            "High NK_score / High GENE_0",
            "High NK_score / Low GENE_0",
            "Low NK_score / High GENE_0",
            "Low NK_score / Low GENE_0",
        ]
        assert set(assignment.included) <= set(assignment.label_order)
        assert list(assignment.group_sizes) == [
            label for label in assignment.label_order if label in assignment.group_sizes
        ]

    def test_two_axis_omits_empty_combinations(self, service):
        values = np.arange(1, 21, dtype=float)
        adata = anndata.AnnData(
            X=np.column_stack([values, values]),
            obs=pd.DataFrame(index=[f"s{i}" for i in range(20)]),
            var=pd.DataFrame(index=["GENE_X", "GENE_Y"]),
        )

        assignment = service.assign_groups(adata, "expr_expr", genes=["GENE_X", "GENE_Y"])

        assert assignment.group_sizes == {
            "High GENE_X / High GENE_Y": 10,
            "Low GENE_X / Low GENE_Y": 10,
        }

    def test_covariate_missing_values_are_excluded(self, service, survival_adata):
        adata = survival_adata.copy()
        adata.obs.loc[adata.obs_names[:7], "age"] = np.nan

        assignment = service.assign_groups(adata, "covariate", covariate="age")

        assert sorted(assignment.excluded) == sorted(adata.obs_names[:7].tolist())
        assert sum(assignment.group_sizes.values()) == adata.n_obs - 7
        assert assignment.axes[0].n_non_missing == adata.n_obs - 7

    def test_samples_missing_from_score_table_are_excluded(self, service, survival_adata, survival_scores):
        partial = survival_scores.iloc[10:]

        assignment = service.assign_groups(survival_adata, "score", scores=partial[["NK_score"]])

        assert sorted(assignment.excluded) == sorted(survival_adata.obs_names[:10].tolist())

    def test_score_mode_uses_first_column_only(self, service, survival_adata, survival_scores, caplog):
        caplog.set_level(logging.WARNING, logger="survstrat")

        assignment = service.assign_groups(survival_adata, "score", scores=survival_scores)

        assert [axis.name for axis in assignment.axes] == ["NK_score"]
        assert "Only the first score column" in caplog.text

    def test_score_score_uses_both_columns(self, service, survival_adata, survival_scores):
        assignment = service.assign_groups(survival_adata, "score_score", scores=survival_scores)

        assert [axis.name for axis in assignment.axes] == ["NK_score", "TGFb_score"]

    def test_configured_group_count_skips_two_axis_modes(self, survival_adata, survival_scores):
        service = SurvivalStratificationService(SurvivalAnalysisConfig(group_count=3))

        assignment = service.assign_groups(
            survival_adata, "score_expr", scores=survival_scores[["NK_score"]], genes="GENE_0"
        )
        result, _, _ = service.compare(
            survival_adata, "score_expr", scores=survival_scores[["NK_score"]], genes="GENE_0"
        )

        assert assignment.spec.group_count == 2
        assert len(assignment.label_order) == 4
        assert result.assignment.spec.group_count == 2

    def test_config_defaults_apply(self, survival_adata):
        service = SurvivalStratificationService(SurvivalAnalysisConfig(group_count=3))

        assignment = service.assign_groups(survival_adata, "expr", genes="GENE_1")

        assert assignment.spec.group_count == 3
        assert len(assignment.label_order) == 3

    def test_input_is_not_modified(self, service, survival_adata, survival_scores):
        obs_before = survival_adata.obs.copy()
        X_before = survival_adata.X.copy()
        scores_before = survival_scores.copy()

        service.assign_groups(survival_adata, "score_expr", scores=survival_scores, genes="GENE_2")

        pd.testing.assert_frame_equal(survival_adata.obs, obs_before)
        np.testing.assert_array_equal(survival_adata.X, X_before)
        pd.testing.assert_frame_equal(survival_scores, scores_before)


class TestAssignGroupsErrors:
    """Contract violations and lookup failures."""

    @pytest.fixture
    def service(self):
        return SurvivalStratificationService()

    def test_unknown_mode(self, service, survival_adata):
        with pytest.raises(ConfigurationError, match="Unknown stratify_mode"):
            service.assign_groups(survival_adata, "expr_covariate_score", genes="GENE_0")

    @pytest.mark.parametrize("group_count", [1, 4])
    def test_invalid_group_count(self, service, survival_adata, group_count):
        with pytest.raises(ConfigurationError, match="group_count"):
            service.assign_groups(survival_adata, "expr", genes="GENE_0", group_count=group_count)

    def test_two_axis_mode_rejects_three_groups(self, service, survival_adata):
        with pytest.raises(ConfigurationError, match="2x2"):
            service.assign_groups(
                survival_adata, "expr_expr", genes=["GENE_0", "GENE_1"], group_count=3
            )

    def test_gene_count_must_match_mode(self, service, survival_adata):
        with pytest.raises(ConfigurationError, match="needs exactly 2 gene"):
            service.assign_groups(survival_adata, "expr_expr", genes=["GENE_0"])

    def test_same_gene_twice_rejected(self, service, survival_adata):
        with pytest.raises(ConfigurationError, match="distinct"):
            service.assign_groups(survival_adata, "expr_expr", genes=["GENE_0", "GENE_0"])

    def test_more_than_two_score_columns(self, service, survival_adata, survival_scores):
        scores = survival_scores.assign(third=1.0)
        with pytest.raises(ConfigurationError, match="At most 2 score columns"):
            service.assign_groups(survival_adata, "score", scores=scores)

    def test_score_mode_without_scores(self, service, survival_adata):
        with pytest.raises(ConfigurationError, match="no scores were supplied"):
            service.assign_groups(survival_adata, "score")

    def test_score_score_needs_two_columns(self, service, survival_adata, survival_scores):
        with pytest.raises(ConfigurationError, match="needs 2 score columns"):
            service.assign_groups(survival_adata, "score_score", scores=survival_scores[["NK_score"]])

    def test_covariate_mode_needs_field(self, service, survival_adata):
        with pytest.raises(ConfigurationError, match="covariate field"):
            service.assign_groups(survival_adata, "covariate")

    def test_non_numeric_covariate(self, service, survival_adata):
        with pytest.raises(ConfigurationError, match="must be numeric"):
            service.assign_groups(survival_adata, "covariate", covariate="stage")

    def test_absent_gene_is_lookup_error(self, service, survival_adata):
        with pytest.raises(FeatureNotFoundError) as exc_info:
            service.assign_groups(survival_adata, "expr", genes="NOT_A_GENE")
        assert isinstance(exc_info.value, LookupError)

    def test_absent_covariate_is_lookup_error(self, service, survival_adata):
        with pytest.raises(LookupError):
            service.assign_groups(survival_adata, "covariate", covariate="bmi")

    def test_duplicated_gene_is_ambiguous(self, service):
        adata = anndata.AnnData(
            X=np.random.RandomState(0).rand(8, 2),
            obs=pd.DataFrame(index=[f"s{i}" for i in range(8)]),
            var=pd.DataFrame(index=["DUP", "DUP"]),
        )
        with pytest.raises(AmbiguousFeatureError) as exc_info:
            service.assign_groups(adata, "expr", genes="DUP")
        assert isinstance(exc_info.value, LookupError)

    def test_gene_key_lookup(self, service, survival_adata):
        adata = survival_adata.copy()
        adata.var["symbol"] = [f"SYM{i}" for i in range(adata.n_vars)]

        assignment = service.assign_groups(adata, "expr", genes="SYM0", gene_key="symbol")

        assert assignment.axes[0].name == "SYM0"

    def test_all_missing_axis(self, service, survival_adata):
        adata = survival_adata.copy()
        adata.obs["age"] = np.nan
        with pytest.raises(InsufficientDataError):
            service.assign_groups(adata, "covariate", covariate="age")


class TestCompare:
    """Kaplan-Meier fitting and log-rank comparison."""

    @pytest.fixture
    def service(self):
        return SurvivalStratificationService()

    def test_returns_result_stats_and_ir(self, service, survival_adata):
        result, stats, ir = service.compare(survival_adata, "expr", genes="GENE_0")

        assert isinstance(result, SurvivalComparison)
        assert isinstance(stats, dict)
        assert isinstance(ir, AnalysisStep)
        assert ir.operation == "survival.stratify.compare"
        assert stats["analysis_type"] == "stratified_kaplan_meier"
        assert stats["log_rank_p_value"] == result.p_value
        assert result.stratify_mode == StratifyMode.EXPR

    def test_three_group_ordinal_comparison(self, service, ordinal_adata):
        result, stats, _ = service.compare(ordinal_adata, "expr", genes="GENE_A", group_count=3)

        assert result.labels == ["High GENE_A", "Medium GENE_A", "Low GENE_A"]
        assert result.display_labels == ["High GENE_A (4)", "Medium GENE_A (3)", "Low GENE_A (3)"]
        assert result.degrees_of_freedom == 2
        assert result.group("Low GENE_A").sample_ids == ["s1", "s2", "s3"]
        assert stats["n_samples_per_group"] == {
            "High GENE_A": 4,
            "Medium GENE_A": 3,
            "Low GENE_A": 3,
        }

    def test_p_value_matches_chi2_tail_rounded(self, service, survival_adata):
        from scipy import stats as scipy_stats

        result, _, _ = service.compare(survival_adata, "expr", genes="GENE_0")

        expected = round(
            1 - scipy_stats.chi2.cdf(result.log_rank_statistic, result.degrees_of_freedom), 6
        )
        assert result.p_value == expected
        assert 0.0 <= result.p_value <= 1.0

    def test_associated_gene_is_significant(self, service, survival_adata):
        result, stats, _ = service.compare(survival_adata, "expr", genes="GENE_0")

        assert result.p_value < 0.05
        assert stats["significant"]

    def test_comparison_is_deterministic(self, service, survival_adata, survival_scores):
        first, _, _ = service.compare(
            survival_adata, "score_expr", scores=survival_scores, genes="GENE_0"
        )
        second, _, _ = service.compare(
            survival_adata, "score_expr", scores=survival_scores, genes="GENE_0"
        )

        assert first.labels == second.labels
        assert first.p_value == second.p_value
        pd.testing.assert_series_equal(first.assignment.labels, second.assignment.labels)

    def test_two_axis_comparison(self, service, survival_adata, survival_scores):
        result, stats, _ = service.compare(
            survival_adata,
            "score_covariate",
            scores=survival_scores[["TGFb_score"]],
            covariate="age",
        )

        assert 2 <= len(result.groups) <= 4
        assert result.degrees_of_freedom == len(result.groups) - 1
        assert all(" / " in label for label in result.labels)
        assert stats["axes"] == ["TGFb_score", "age"]

    def test_ignored_score_column_does_not_change_result(
        self, service, survival_adata, survival_scores
    ):
        rng = np.random.default_rng(11)
        other = survival_scores.assign(TGFb_score=rng.normal(5.0, 2.0, survival_adata.n_obs))

        first, _, _ = service.compare(survival_adata, "score", scores=survival_scores)
        second, _, _ = service.compare(survival_adata, "score", scores=other)

        assert first.display_labels == second.display_labels
        assert first.group_sizes == second.group_sizes
        assert first.p_value == second.p_value

    def test_explicit_event_map_matches_binary_column(self, service, survival_adata):
        binary, _, _ = service.compare(survival_adata, "expr", genes="GENE_0")
        mapped, _, _ = service.compare(
            survival_adata,
            "expr",
            genes="GENE_0",
            event_field="vital_status",
            event_map={"Dead": True, "Alive": False},
        )

        assert mapped.p_value == binary.p_value
        assert mapped.group_sizes == binary.group_sizes

    def test_event_map_from_config(self, survival_adata):
        config = SurvivalAnalysisConfig(
            event_field="vital_status", event_map={"Dead": True, "Alive": False}
        )
        result, _, _ = SurvivalStratificationService(config).compare(
            survival_adata, "expr", genes="GENE_0"
        )

        assert result.event_field == "vital_status"

    def test_categorical_events_require_event_map(self, service, survival_adata):
        with pytest.raises(ConfigurationError, match="event_map"):
            service.compare(survival_adata, "expr", genes="GENE_0", event_field="vital_status")

    def test_unmapped_event_label(self, service, survival_adata):
        with pytest.raises(ConfigurationError, match="not covered"):
            service.compare(
                survival_adata,
                "expr",
                genes="GENE_0",
                event_field="vital_status",
                event_map={"Dead": True},
            )

    def test_missing_time_field(self, service, survival_adata):
        with pytest.raises(FeatureNotFoundError, match="PFS_days"):
            service.compare(survival_adata, "expr", genes="GENE_0", time_field="PFS_days")

    def test_missing_survival_data_excluded(self, service, survival_adata):
        adata = survival_adata.copy()
        adata.obs.loc[adata.obs_names[:4], "OS_time"] = np.nan
        adata.obs["OS_event"] = adata.obs["OS_event"].astype(float)
        adata.obs.loc[adata.obs_names[4:6], "OS_event"] = np.nan

        result, stats, _ = service.compare(adata, "expr", genes="GENE_0")

        assert result.n_excluded == 6
        assert stats["n_valid_samples"] == adata.n_obs - 6
        assert sum(result.group_sizes.values()) == adata.n_obs - 6

    def test_negative_times_excluded_with_warning(self, service, survival_adata, caplog):
        caplog.set_level(logging.WARNING, logger="survstrat")
        adata = survival_adata.copy()
        adata.obs.loc[adata.obs_names[0], "OS_time"] = -5.0

        result, _, _ = service.compare(adata, "expr", genes="GENE_0")

        assert result.n_excluded == 1
        assert "negative" in caplog.text

    def test_single_group_is_insufficient(self, service, survival_adata):
        adata = survival_adata.copy()
        adata.X[:, 5] = 3.0
        with pytest.raises(InsufficientDataError):
            service.compare(adata, "expr", genes="GENE_5")

    def test_errors_share_base_class(self, service, survival_adata):
        with pytest.raises(SurvivalStratificationError):
            service.compare(survival_adata, "expr", genes="GENE_0", group_count=5)

    def test_fit_failure_is_wrapped(self, service, survival_adata, mocker):
        mocker.patch(
            "lifelines.KaplanMeierFitter.fit", side_effect=RuntimeError("fit exploded")
        )

        with pytest.raises(SurvivalStratificationError, match="fit exploded") as exc_info:
            service.compare(survival_adata, "expr", genes="GENE_0")

        assert type(exc_info.value) is SurvivalStratificationError
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_confidence_band_flag_is_echoed(self, service, survival_adata):
        result, _, _ = service.compare(
            survival_adata, "expr", genes="GENE_0", with_confidence_band=True
        )
        assert result.with_confidence_band is True

    def test_curves_start_at_full_survival(self, service, survival_adata):
        result, _, _ = service.compare(survival_adata, "expr", genes="GENE_0")

        for display_label, curve in result.curves().items():
            assert display_label in result.display_labels
            assert curve["survival_function"][0] == pytest.approx(1.0)
            assert len(curve["timeline"]) == len(curve["confidence_lower"])
            assert all(
                lo <= s + 1e-12
                for lo, s in zip(curve["confidence_lower"], curve["survival_function"])
            )

    def test_to_dict_summary(self, service, survival_adata):
        result, _, _ = service.compare(survival_adata, "covariate", covariate="age")
        summary = result.to_dict()

        assert summary["stratify_mode"] == "covariate"
        assert summary["labels"] == result.labels
        assert set(summary["survival_curves"]) == set(result.display_labels)

    def test_group_lookup_unknown_label(self, service, survival_adata):
        result, _, _ = service.compare(survival_adata, "expr", genes="GENE_0")
        with pytest.raises(KeyError):
            result.group("Medium GENE_0")

    def test_ir_renders_call(self, service, survival_adata):
        _, _, ir = service.compare(
            survival_adata,
            "expr",
            genes="GENE_0",
            event_field="vital_status",
            event_map={"Dead": True, "Alive": False},
        )
        code = ir.render()

        assert "stratify_mode='expr'" in code
        assert "genes=['GENE_0']" in code
        assert "event_map={'Dead': True, 'Alive': False}" in code
        assert "scores=" not in code


class TestScreenGenes:
    """Batch expression screen with FDR correction."""

    @pytest.fixture
    def service(self):
        return SurvivalStratificationService()

    def test_screen_all_genes(self, service, survival_adata):
        screen, stats, ir = service.screen_genes(survival_adata)

        assert len(screen) == survival_adata.n_vars
        assert list(screen.columns) == [
            "gene",
            "log_rank_statistic",
            "p_value",
            "fdr",
            "significant",
            "n_samples",
            "n_groups",
        ]
        assert screen["p_value"].is_monotonic_increasing
        assert (screen["fdr"] >= screen["p_value"]).all()
        assert screen.iloc[0]["gene"] == "GENE_0"
        assert stats["n_genes_tested"] == survival_adata.n_vars
        assert ir.operation == "survival.stratify.screen_genes"

    def test_unresolvable_genes_are_skipped(self, service, survival_adata):
        screen, stats, _ = service.screen_genes(survival_adata, genes=["GENE_0", "MISSING"])

        assert screen["gene"].tolist() == ["GENE_0"]
        assert stats["n_skipped_lookup"] == 1

    def test_constant_genes_are_skipped(self, service, survival_adata):
        adata = survival_adata.copy()
        adata.X[:, 1] = 0.0

        _, stats, _ = service.screen_genes(adata, genes=["GENE_0", "GENE_1"])

        assert stats["n_skipped_insufficient"] == 1

    def test_missing_time_field_fails_once(self, service, survival_adata):
        with pytest.raises(FeatureNotFoundError):
            service.screen_genes(survival_adata, genes=["GENE_0"], time_field="PFS_days")

    def test_unknown_gene_key(self, service, survival_adata):
        with pytest.raises(FeatureNotFoundError, match="Gene key 'symbol'"):
            service.screen_genes(survival_adata, gene_key="symbol")
