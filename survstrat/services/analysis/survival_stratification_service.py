"""
Stratified survival comparison service.

This service splits samples into groups by gene expression, signature score or a
clinical covariate (one axis, or two crossed axes), fits a Kaplan-Meier curve
per group and compares the groups with an omnibus log-rank test.

All public methods return 3-tuples (result, Dict, AnalysisStep) for provenance
tracking and reproducible report code.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import anndata
import numpy as np
import pandas as pd
from scipy import sparse

from survstrat.config.analysis_config import SurvivalAnalysisConfig
from survstrat.config.constants import (
    BUCKET_HIGH,
    BUCKET_LOW,
    BUCKET_MEDIUM,
    MAX_SCORE_COLUMNS,
    VALID_STRATIFY_MODES,
)
from survstrat.core.analysis_ir import AnalysisStep, ParameterSpec
from survstrat.core.exceptions import (
    AmbiguousFeatureError,
    ConfigurationError,
    FeatureNotFoundError,
    InsufficientDataError,
    SurvivalStratificationError,
)
from survstrat.core.schemas.sample_schema import encode_events
from survstrat.core.schemas.stratification import (
    AxisKind,
    GroupAssignment,
    StratificationAxis,
    StratificationSpec,
    StratifyMode,
    SurvivalComparison,
    SurvivalGroup,
    axis_label,
    combine_labels,
)
from survstrat.utils.logger import get_logger
from survstrat.utils.statistics import (
    benjamini_hochberg,
    chi2_p_value,
    percentile_thresholds,
)

logger = get_logger(__name__)


GenesArg = Optional[Union[str, Sequence[str]]]


class SurvivalStratificationService:
    """
    Kaplan-Meier comparison of sample strata.

    This stateless service (configuration aside) never mutates the AnnData or
    score tables it is given.

    Supported modes: expr, score, covariate, score_expr, covariate_expr,
    score_covariate, expr_expr, score_score. Single-axis modes split into 2
    (median or 33/66 extremes) or 3 (33/66 tertiles) groups; two-axis modes are
    always 2x2.

    Example usage:
        service = SurvivalStratificationService()
        result, stats, ir = service.compare(
            adata,
            stratify_mode="score_expr",
            scores=scores[["NK_score"]],
            genes=["TGFB1"],
            time_field="OS_time",
            event_field="vital_status",
            event_map={"Dead": True, "Alive": False},
        )
        print(result.display_labels, result.p_value)
    """

    def __init__(self, config: Optional[SurvivalAnalysisConfig] = None):
        """
        Initialize the survival stratification service.

        Args:
            config: Defaults for survival fields, event encoding and splits
        """
        self.config = config or SurvivalAnalysisConfig()
        logger.debug("Initializing SurvivalStratificationService")

    # ------------------------------------------------------------------
    # Axis resolution
    # ------------------------------------------------------------------

    def _normalize_genes(self, genes: GenesArg) -> List[str]:
        if genes is None:
            return []
        if isinstance(genes, str):
            return [genes]
        return [str(g) for g in genes]

    def _gene_values(
        self, adata: anndata.AnnData, gene: str, gene_key: Optional[str]
    ) -> pd.Series:
        """Expression of one gene across samples; the gene must match exactly one row."""
        if gene_key is None:
            identifiers = adata.var_names
            where = "var_names"
        else:
            if gene_key not in adata.var.columns:
                raise FeatureNotFoundError(
                    f"Gene key '{gene_key}' not found in var. "
                    f"Available columns: {list(adata.var.columns)}"
                )
            identifiers = adata.var[gene_key].astype(str)
            where = f"var['{gene_key}']"

        matches = np.flatnonzero(np.asarray(identifiers == gene))
        if matches.size == 0:
            raise FeatureNotFoundError(f"Gene '{gene}' not found in {where}")
        if matches.size > 1:
            raise AmbiguousFeatureError(
                f"Gene '{gene}' matches {matches.size} rows in {where}; "
                "collapse duplicates or choose a unique identifier"
            )

        column = adata.X[:, int(matches[0])]
        if sparse.issparse(column):
            column = column.toarray()
        return pd.Series(
            np.asarray(column, dtype=float).ravel(), index=adata.obs_names, name=gene
        )

    def _score_columns(
        self, adata: anndata.AnnData, scores: Optional[pd.DataFrame], needed: int
    ) -> List[pd.Series]:
        """Score columns aligned to the samples; missing samples become NaN."""
        if needed == 0:
            if scores is not None:
                logger.warning("Score table supplied but stratify_mode has no score axis; ignoring it")
            return []

        if scores is None or scores.shape[1] == 0:
            raise ConfigurationError(
                f"stratify_mode needs {needed} score column(s) but no scores were supplied"
            )
        if scores.shape[1] > MAX_SCORE_COLUMNS:
            raise ConfigurationError(
                f"At most {MAX_SCORE_COLUMNS} score columns are supported, got "
                f"{scores.shape[1]}: {list(scores.columns)}"
            )
        if scores.shape[1] < needed:
            raise ConfigurationError(
                f"stratify_mode needs {needed} score columns, got {scores.shape[1]}"
            )
        if scores.shape[1] > needed:
            # Single score axis: only the first column is used
            logger.warning(
                f"Only the first score column '{scores.columns[0]}' is used; "
                f"ignoring {list(scores.columns[needed:])}"
            )

        aligned = scores.reindex(adata.obs_names)
        n_unmatched = int(aligned.isna().all(axis=1).sum())
        if n_unmatched:
            logger.debug(f"{n_unmatched} samples have no entry in the score table")

        return [
            pd.to_numeric(aligned.iloc[:, i], errors="coerce").rename(str(scores.columns[i]))
            for i in range(needed)
        ]

    def _covariate_values(self, adata: anndata.AnnData, covariate: str) -> pd.Series:
        if covariate not in adata.obs.columns:
            raise FeatureNotFoundError(
                f"Covariate '{covariate}' not found in obs. "
                f"Available columns: {list(adata.obs.columns)}"
            )
        column = adata.obs[covariate]
        if not (pd.api.types.is_numeric_dtype(column) and not pd.api.types.is_bool_dtype(column)):
            try:
                column = pd.to_numeric(column, errors="raise")
            except (TypeError, ValueError) as e:
                raise ConfigurationError(
                    f"Covariate '{covariate}' must be numeric: {e}"
                ) from e
        return column.astype(float).rename(covariate)

    def _resolve_axes(
        self,
        adata: anndata.AnnData,
        mode: StratifyMode,
        scores: Optional[pd.DataFrame],
        genes: List[str],
        covariate: Optional[str],
        gene_key: Optional[str],
    ) -> List[Tuple[AxisKind, pd.Series]]:
        """Resolve the input values of every axis, in mode order."""
        n_expr = mode.count(AxisKind.EXPR)
        n_covariate = mode.count(AxisKind.COVARIATE)

        if n_expr:
            if len(genes) != n_expr:
                raise ConfigurationError(
                    f"stratify_mode '{mode.value}' needs exactly {n_expr} gene(s), got {len(genes)}: {genes}"
                )
        elif genes:
            logger.warning(f"Genes {genes} ignored: stratify_mode '{mode.value}' has no expression axis")

        if n_covariate:
            if not covariate:
                raise ConfigurationError(
                    f"stratify_mode '{mode.value}' needs a covariate field name"
                )
            if not isinstance(covariate, str):
                raise ConfigurationError(
                    f"covariate must be a single field name, got {covariate!r}"
                )
        elif covariate:
            logger.warning(f"Covariate '{covariate}' ignored: stratify_mode '{mode.value}' has no covariate axis")

        score_values = iter(self._score_columns(adata, scores, mode.count(AxisKind.SCORE)))
        gene_names = iter(genes)

        axes: List[Tuple[AxisKind, pd.Series]] = []
        for kind in mode.axis_kinds:
            if kind == AxisKind.EXPR:
                values = self._gene_values(adata, next(gene_names), gene_key)
            elif kind == AxisKind.SCORE:
                values = next(score_values)
            else:
                values = self._covariate_values(adata, covariate)
            axes.append((kind, values))

        names = [values.name for _, values in axes]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Two-axis stratification needs distinct fields, got {names}")

        return axes

    # ------------------------------------------------------------------
    # Bucketing
    # ------------------------------------------------------------------

    def _bucket_axis(
        self, values: pd.Series, spec: StratificationSpec
    ) -> Tuple[pd.Series, Dict[str, float]]:
        """
        Assign High / Medium / Low buckets to one axis.

        Thresholds are computed over the non-missing values of the axis.
        Percentile-pair splits: High >= upper, Low <= lower (High wins when the
        thresholds coincide), Medium strictly between (3 groups) or dropped
        (2-group extremes). Median split: High >= median > Low.
        """
        try:
            if spec.uses_percentile_pair:
                lower, upper = percentile_thresholds(
                    values, [spec.lower_percentile, spec.upper_percentile]
                )
                thresholds = {"lower": lower, "upper": upper}
            else:
                (median,) = percentile_thresholds(values, [50.0])
                thresholds = {"median": median}
        except ValueError:
            raise InsufficientDataError(
                f"No non-missing values for '{values.name}'"
            ) from None

        buckets = pd.Series(None, index=values.index, dtype=object)
        present = values.notna()

        if spec.uses_percentile_pair:
            high = present & (values >= thresholds["upper"])
            low = present & (values <= thresholds["lower"]) & ~high
            buckets[high] = BUCKET_HIGH
            buckets[low] = BUCKET_LOW
            if spec.group_count == 3:
                buckets[present & ~high & ~low] = BUCKET_MEDIUM
        else:
            buckets[present & (values >= thresholds["median"])] = BUCKET_HIGH
            buckets[present & (values < thresholds["median"])] = BUCKET_LOW

        return buckets, thresholds

    def assign_groups(
        self,
        adata: anndata.AnnData,
        stratify_mode: Union[StratifyMode, str],
        scores: Optional[pd.DataFrame] = None,
        genes: GenesArg = None,
        covariate: Optional[str] = None,
        group_count: Optional[int] = None,
        split: Optional[str] = None,
        gene_key: Optional[str] = None,
    ) -> GroupAssignment:
        """
        Compute per-sample group labels without fitting survival curves.

        Args:
            adata: Dataset (samples x genes), not modified
            stratify_mode: One of the eight stratification modes
            scores: Sample-indexed table with one or two score columns
            genes: Gene name(s) for expression axes
            covariate: obs column for the covariate axis
            group_count: 2 or 3 (defaults to config for single-axis modes, 2 for two-axis modes)
            split: "median" or "extremes" for two groups (defaults to config)
            gene_key: var column holding gene identifiers (default: var_names)

        Returns:
            GroupAssignment: labels (None for excluded samples), axes and label order

        Raises:
            ConfigurationError: Mode / axis / group_count mismatch
            LookupError: Gene or covariate missing or ambiguous
            InsufficientDataError: An axis has no non-missing values
        """
        if group_count is None:
            # The configured group count applies to single-axis modes only
            group_count = self.config.group_count
            if stratify_mode in VALID_STRATIFY_MODES and StratifyMode(stratify_mode).n_axes == 2:
                group_count = 2

        spec = StratificationSpec(
            mode=stratify_mode,
            group_count=group_count,
            split=self.config.split if split is None else split,
            lower_percentile=self.config.lower_percentile,
            upper_percentile=self.config.upper_percentile,
        )

        resolved = self._resolve_axes(
            adata,
            spec.mode,
            scores,
            self._normalize_genes(genes),
            covariate,
            gene_key,
        )

        axes: List[StratificationAxis] = []
        per_axis_labels: List[pd.Series] = []
        per_axis_order: List[List[str]] = []
        for kind, values in resolved:
            buckets, thresholds = self._bucket_axis(values, spec)
            name = str(values.name)
            axes.append(
                StratificationAxis(
                    kind=kind,
                    name=name,
                    thresholds=thresholds,
                    n_non_missing=int(values.notna().sum()),
                )
            )
            per_axis_labels.append(
                buckets.map(lambda b, n=name: None if pd.isna(b) else axis_label(b, n))
            )
            per_axis_order.append([axis_label(b, name) for b in spec.buckets])

        if len(per_axis_labels) == 1:
            labels = per_axis_labels[0]
            label_order = per_axis_order[0]
        else:
            first, second = per_axis_labels
            labels = pd.Series(
                [
                    None if pd.isna(a) or pd.isna(b) else combine_labels([a, b])
                    for a, b in zip(first, second)
                ],
                index=first.index,
                dtype=object,
            )
            label_order = [
                combine_labels([a, b]) for a in per_axis_order[0] for b in per_axis_order[1]
            ]

        assignment = GroupAssignment(
            labels=labels.astype(object),
            axes=axes,
            label_order=label_order,
            spec=spec,
        )
        logger.debug(
            f"Assigned {len(assignment.included)}/{len(labels)} samples: {assignment.group_sizes}"
        )
        return assignment

    # ------------------------------------------------------------------
    # Survival data
    # ------------------------------------------------------------------

    def _survival_data(
        self,
        adata: anndata.AnnData,
        time_field: str,
        event_field: str,
        event_map: Optional[Mapping[Any, bool]],
    ) -> Tuple[pd.Series, pd.Series]:
        """Durations and 0/1 event indicators; invalid entries become NaN."""
        if time_field not in adata.obs.columns:
            raise FeatureNotFoundError(
                f"Time field '{time_field}' not found in obs. "
                f"Available columns: {list(adata.obs.columns)}"
            )
        if event_field not in adata.obs.columns:
            raise FeatureNotFoundError(
                f"Event field '{event_field}' not found in obs. "
                f"Available columns: {list(adata.obs.columns)}"
            )

        duration = pd.to_numeric(adata.obs[time_field], errors="coerce").astype(float)
        negative = duration < 0
        if negative.any():
            logger.warning(
                f"{int(negative.sum())} samples have negative '{time_field}' and are excluded"
            )
            duration = duration.mask(negative)

        event = encode_events(adata.obs[event_field], event_map)
        return duration, event

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def compare(
        self,
        adata: anndata.AnnData,
        stratify_mode: Union[StratifyMode, str],
        scores: Optional[pd.DataFrame] = None,
        genes: GenesArg = None,
        covariate: Optional[str] = None,
        time_field: Optional[str] = None,
        event_field: Optional[str] = None,
        event_map: Optional[Mapping[Any, bool]] = None,
        group_count: Optional[int] = None,
        split: Optional[str] = None,
        with_confidence_band: bool = False,
        gene_key: Optional[str] = None,
    ) -> Tuple[SurvivalComparison, Dict[str, Any], AnalysisStep]:
        """
        Compare survival between strata defined by one or two axes.

        Args:
            adata: Dataset (samples x genes) with survival fields in obs, not modified
            stratify_mode: One of the eight stratification modes
            scores: Sample-indexed table with one or two score columns. In
                single-score modes only the first column is used.
            genes: Gene name(s) for expression axes
            covariate: obs column for the covariate axis
            time_field: obs column with survival time (defaults to config)
            event_field: obs column with event status (defaults to config)
            event_map: Event label -> observed mapping (defaults to config);
                without one the event column must be boolean or 0/1
            group_count: 2 or 3 (defaults to config for single-axis modes, 2 for two-axis modes)
            split: "median" or "extremes" for two groups (defaults to config)
            with_confidence_band: Rendering hint echoed in the result
            gene_key: var column holding gene identifiers (default: var_names)

        Returns:
            Tuple[SurvivalComparison, Dict[str, Any], AnalysisStep]:
                - Fitted groups, log-rank statistic and p-value
                - Analysis statistics dict
                - IR for report export

        Raises:
            ConfigurationError: Mode / axis / group_count / event encoding mismatch
            LookupError: Gene, covariate or survival field missing or ambiguous
            InsufficientDataError: Fewer than two non-empty groups remain
            SurvivalStratificationError: Any other failure during fitting
        """
        time_field = time_field or self.config.time_field
        event_field = event_field or self.config.event_field
        if event_map is None:
            event_map = self.config.event_map

        try:
            logger.info(f"Starting stratified survival comparison (mode={stratify_mode})")

            from lifelines import KaplanMeierFitter
            from lifelines.statistics import multivariate_logrank_test

            assignment = self.assign_groups(
                adata,
                stratify_mode,
                scores=scores,
                genes=genes,
                covariate=covariate,
                group_count=group_count,
                split=split,
                gene_key=gene_key,
            )
            spec = assignment.spec

            duration, event = self._survival_data(adata, time_field, event_field, event_map)
            labels = assignment.labels

            valid = labels.notna() & duration.notna() & event.notna()
            n_excluded = int((~valid).sum())
            logger.info(f"Valid samples: {int(valid.sum())} ({n_excluded} excluded)")

            present = set(labels[valid])
            group_order = [label for label in assignment.label_order if label in present]
            if len(group_order) < 2:
                raise InsufficientDataError(
                    f"Need at least 2 non-empty groups after exclusion, got "
                    f"{len(group_order)} ({group_order})"
                )

            groups: List[SurvivalGroup] = []
            for label in group_order:
                mask = valid & (labels == label)
                n_samples = int(mask.sum())
                if n_samples < self.config.min_group_size:
                    logger.warning(f"Group '{label}' has only {n_samples} samples")

                durations = duration[mask].to_numpy()
                events = event[mask].to_numpy().astype(int)
                display_label = f"{label} ({n_samples})"

                kmf = KaplanMeierFitter(alpha=1.0 - self.config.confidence_level)
                kmf.fit(durations, event_observed=events, label=display_label)

                groups.append(
                    SurvivalGroup(
                        label=label,
                        display_label=display_label,
                        n_samples=n_samples,
                        n_events=int(events.sum()),
                        durations=durations,
                        events=events,
                        sample_ids=labels.index[mask].tolist(),
                        fitter=kmf,
                    )
                )

            lr_result = multivariate_logrank_test(
                duration[valid].to_numpy(),
                labels[valid].to_numpy(),
                event[valid].to_numpy().astype(int),
            )
            log_rank_statistic = float(lr_result.test_statistic)
            dof = len(groups) - 1
            p_value = chi2_p_value(log_rank_statistic, dof)

            result = SurvivalComparison(
                assignment=assignment,
                groups=groups,
                log_rank_statistic=log_rank_statistic,
                degrees_of_freedom=dof,
                p_value=p_value,
                with_confidence_band=bool(with_confidence_band),
                time_field=time_field,
                event_field=event_field,
                n_excluded=n_excluded,
            )

            analysis_stats = {
                "stratify_mode": spec.mode.value,
                "group_count": spec.group_count,
                "split": spec.split,
                "axes": [axis.name for axis in assignment.axes],
                "thresholds": assignment.thresholds,
                "n_groups": len(groups),
                "labels": result.labels,
                "display_labels": result.display_labels,
                "n_samples_per_group": result.group_sizes,
                "n_events_per_group": {g.label: g.n_events for g in groups},
                "median_survival_by_group": {g.label: g.median_survival for g in groups},
                "n_valid_samples": int(valid.sum()),
                "n_excluded_samples": n_excluded,
                "log_rank_statistic": log_rank_statistic,
                "degrees_of_freedom": dof,
                "log_rank_p_value": p_value,
                "significant": p_value < self.config.fdr_threshold,
                "analysis_type": "stratified_kaplan_meier",
            }

            logger.info(
                f"Stratified comparison complete: {len(groups)} groups, log-rank p={p_value:.6f}"
            )

            ir = self._create_ir_compare(
                stratify_mode=spec.mode.value,
                score_columns=None if scores is None else [str(c) for c in scores.columns],
                genes=self._normalize_genes(genes),
                covariate=covariate,
                time_field=time_field,
                event_field=event_field,
                event_map=None if event_map is None else dict(event_map),
                group_count=spec.group_count,
                split=spec.split,
                with_confidence_band=bool(with_confidence_band),
                gene_key=gene_key,
            )

            return result, analysis_stats, ir

        except SurvivalStratificationError:
            raise
        except Exception as e:
            logger.exception(f"Error in stratified survival comparison: {e}")
            raise SurvivalStratificationError(
                f"Stratified survival comparison failed: {str(e)}"
            ) from e

    def screen_genes(
        self,
        adata: anndata.AnnData,
        genes: Optional[Sequence[str]] = None,
        time_field: Optional[str] = None,
        event_field: Optional[str] = None,
        event_map: Optional[Mapping[Any, bool]] = None,
        group_count: Optional[int] = None,
        split: Optional[str] = None,
        fdr_threshold: Optional[float] = None,
        gene_key: Optional[str] = None,
    ) -> Tuple[pd.DataFrame, Dict[str, Any], AnalysisStep]:
        """
        Run the expression-mode comparison for many genes and apply FDR correction.

        Genes that cannot be resolved (absent or ambiguous) or that leave fewer
        than two groups are skipped and counted.

        Args:
            adata: Dataset (samples x genes)
            genes: Genes to screen (default: all unique var_names)
            time_field: obs column with survival time
            event_field: obs column with event status
            event_map: Event label -> observed mapping
            group_count: 2 or 3
            split: "median" or "extremes" for two groups
            fdr_threshold: FDR significance cutoff (defaults to config)
            gene_key: var column holding gene identifiers

        Returns:
            Tuple with the results table (sorted by p-value), statistics and IR
        """
        fdr_threshold = self.config.fdr_threshold if fdr_threshold is None else fdr_threshold
        try:
            logger.info("Starting stratified survival gene screen")

            # Missing survival fields or bad event encoding fail once, not per gene
            self._survival_data(
                adata,
                time_field or self.config.time_field,
                event_field or self.config.event_field,
                self.config.event_map if event_map is None else event_map,
            )

            if gene_key is not None and gene_key not in adata.var.columns:
                raise FeatureNotFoundError(
                    f"Gene key '{gene_key}' not found in var. "
                    f"Available columns: {list(adata.var.columns)}"
                )

            if genes is None:
                identifiers = adata.var_names if gene_key is None else adata.var[gene_key]
                genes = pd.Index(identifiers.astype(str)).drop_duplicates(keep=False).tolist()

            rows = []
            n_skipped_lookup = 0
            n_skipped_insufficient = 0
            for gene in genes:
                try:
                    result, _, _ = self.compare(
                        adata,
                        stratify_mode=StratifyMode.EXPR,
                        genes=[gene],
                        time_field=time_field,
                        event_field=event_field,
                        event_map=event_map,
                        group_count=group_count,
                        split=split,
                        gene_key=gene_key,
                    )
                except LookupError as e:
                    n_skipped_lookup += 1
                    logger.debug(f"Skipping {gene}: {e}")
                    continue
                except InsufficientDataError as e:
                    n_skipped_insufficient += 1
                    logger.debug(f"Skipping {gene}: {e}")
                    continue

                rows.append(
                    {
                        "gene": gene,
                        "log_rank_statistic": result.log_rank_statistic,
                        "p_value": result.p_value,
                        "n_samples": sum(result.group_sizes.values()),
                        "n_groups": len(result.groups),
                    }
                )

            results_df = pd.DataFrame(
                rows,
                columns=["gene", "log_rank_statistic", "p_value", "n_samples", "n_groups"],
            )
            results_df["fdr"] = benjamini_hochberg(results_df["p_value"].tolist())
            results_df["significant"] = results_df["fdr"] < fdr_threshold
            results_df = (
                results_df.sort_values(["p_value", "gene"], kind="mergesort")
                .reset_index(drop=True)
                .loc[:, ["gene", "log_rank_statistic", "p_value", "fdr", "significant", "n_samples", "n_groups"]]
            )

            significant = results_df.loc[results_df["significant"], "gene"].tolist()
            stats = {
                "n_genes_tested": int(len(results_df)),
                "n_skipped_lookup": n_skipped_lookup,
                "n_skipped_insufficient": n_skipped_insufficient,
                "n_significant": len(significant),
                "fdr_threshold": fdr_threshold,
                "significant_genes": significant,
                "analysis_type": "stratified_gene_screen",
            }
            logger.info(
                f"Gene screen complete: {len(significant)}/{len(results_df)} significant at FDR < {fdr_threshold}"
            )

            ir = AnalysisStep(
                operation="survival.stratify.screen_genes",
                tool_name="screen_genes",
                description="Expression-stratified log-rank screen across genes with BH FDR",
                library="survstrat.services.analysis.survival_stratification_service",
                code_template="""# Expression-stratified log-rank screen
from survstrat.services.analysis.survival_stratification_service import SurvivalStratificationService

service = SurvivalStratificationService()
screen, stats, _ = service.screen_genes(
    adata,
    genes={{ genes | py }},
    time_field={{ time_field | py }},
    event_field={{ event_field | py }},
    fdr_threshold={{ fdr_threshold | py }},
)
print(screen.head(10))""",
                imports=[
                    "from survstrat.services.analysis.survival_stratification_service import SurvivalStratificationService"
                ],
                parameters={
                    "genes": list(genes),
                    "time_field": time_field or self.config.time_field,
                    "event_field": event_field or self.config.event_field,
                    "fdr_threshold": fdr_threshold,
                },
                parameter_schema={},
                input_entities=["adata"],
                output_entities=["screen"],
            )

            return results_df, stats, ir

        except SurvivalStratificationError:
            raise
        except Exception as e:
            logger.exception(f"Error in gene screen: {e}")
            raise SurvivalStratificationError(f"Gene screen failed: {str(e)}") from e

    def _create_ir_compare(
        self,
        stratify_mode: str,
        score_columns: Optional[List[str]],
        genes: List[str],
        covariate: Optional[str],
        time_field: str,
        event_field: str,
        event_map: Optional[Dict[Any, bool]],
        group_count: int,
        split: str,
        with_confidence_band: bool,
        gene_key: Optional[str],
    ) -> AnalysisStep:
        """Create IR for a stratified comparison."""
        return AnalysisStep(
            operation="survival.stratify.compare",
            tool_name="compare",
            description="Kaplan-Meier comparison of strata defined by expression, score or covariate",
            library="survstrat.services.analysis.survival_stratification_service",
            code_template="""# Stratified Kaplan-Meier comparison
from survstrat.services.analysis.survival_stratification_service import SurvivalStratificationService

service = SurvivalStratificationService()
result, stats, _ = service.compare(
    adata,
    stratify_mode={{ stratify_mode | py }},
{%- if score_columns %}
    scores=scores[{{ score_columns | py }}],
{%- endif %}
{%- if genes %}
    genes={{ genes | py }},
{%- endif %}
{%- if covariate %}
    covariate={{ covariate | py }},
{%- endif %}
    time_field={{ time_field | py }},
    event_field={{ event_field | py }},
    event_map={{ event_map | py }},
    group_count={{ group_count }},
    split={{ split | py }},
    with_confidence_band={{ with_confidence_band }},
    gene_key={{ gene_key | py }},
)
print(f"Groups: {result.display_labels}")
print(f"Log-rank p-value: {result.p_value}")""",
            imports=[
                "from survstrat.services.analysis.survival_stratification_service import SurvivalStratificationService"
            ],
            parameters={
                "stratify_mode": stratify_mode,
                "score_columns": score_columns,
                "genes": genes,
                "covariate": covariate,
                "time_field": time_field,
                "event_field": event_field,
                "event_map": event_map,
                "group_count": group_count,
                "split": split,
                "with_confidence_band": with_confidence_band,
                "gene_key": gene_key,
            },
            parameter_schema={
                "stratify_mode": ParameterSpec(
                    param_type="str",
                    papermill_injectable=True,
                    default_value="expr",
                    required=True,
                    validation_rule="stratify_mode in VALID_STRATIFY_MODES",
                    description="Stratification mode (axis kinds joined by '_')",
                ),
                "genes": ParameterSpec(
                    param_type="List[str]",
                    papermill_injectable=True,
                    default_value=[],
                    required=False,
                    description="Genes for expression axes",
                ),
                "covariate": ParameterSpec(
                    param_type="Optional[str]",
                    papermill_injectable=True,
                    default_value=None,
                    required=False,
                    description="obs column for the covariate axis",
                ),
                "time_field": ParameterSpec(
                    param_type="str",
                    papermill_injectable=True,
                    default_value="OS_time",
                    required=True,
                    description="obs column with survival time",
                ),
                "event_field": ParameterSpec(
                    param_type="str",
                    papermill_injectable=True,
                    default_value="OS_event",
                    required=True,
                    description="obs column with event status",
                ),
                "group_count": ParameterSpec(
                    param_type="int",
                    papermill_injectable=True,
                    default_value=2,
                    required=False,
                    validation_rule="group_count in [2, 3]",
                    description="Groups per single axis",
                ),
                "split": ParameterSpec(
                    param_type="str",
                    papermill_injectable=True,
                    default_value="median",
                    required=False,
                    validation_rule="split in ['median', 'extremes']",
                    description="Two-group split method",
                ),
            },
            input_entities=["adata"] + (["scores"] if score_columns else []),
            output_entities=["result"],
        )
