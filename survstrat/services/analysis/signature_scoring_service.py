"""
Rank-based gene-signature scoring and score correlation.

Scores summarise, per sample, where the genes of a signature sit in that
sample's expression ranking. They feed the score axes of the stratified
survival comparison and the score-vs-score correlation tables of the reports.

All methods return 3-tuples (result, Dict, AnalysisStep) for provenance tracking.
"""

from itertools import combinations
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import anndata
import numpy as np
import pandas as pd
from scipy import sparse, stats

from survstrat.config.constants import DEFAULT_FDR_THRESHOLD, VALID_CORRELATION_METHODS
from survstrat.core.analysis_ir import AnalysisStep, ParameterSpec
from survstrat.utils.logger import get_logger
from survstrat.utils.statistics import benjamini_hochberg

logger = get_logger(__name__)

MIN_CORRELATION_SAMPLES = 3  # Pairs with fewer complete observations get NaN


class SignatureScoringError(Exception):
    """Base exception for signature scoring operations."""

    pass


class SignatureScoringService:
    """
    Per-sample signature scores and their pairwise correlation.

    The score of a signature in a sample is the mean within-sample rank of its
    genes (ascending expression, ties averaged), rescaled so that 0 means the
    signature genes are the lowest expressed genes and 1 the highest. It is a
    simple rank summary, not an implementation of any published scoring method.

    Example usage:
        service = SignatureScoringService()
        scores, stats, ir = service.score_signatures(
            adata,
            signatures={"NK_score": ["NCAM1", "KLRD1", "GNLY"], "TGFb_score": ["TGFB1", "SMAD7"]},
        )
        corr, corr_stats, _ = service.correlate_scores(scores, method="spearman")
    """

    def __init__(self):
        logger.debug("Initializing stateless SignatureScoringService")

    def _expression_frame(
        self, adata: anndata.AnnData, gene_key: Optional[str]
    ) -> pd.DataFrame:
        X = adata.X.toarray() if sparse.issparse(adata.X) else np.asarray(adata.X, dtype=float)
        if gene_key is None:
            columns = adata.var_names.astype(str)
        else:
            if gene_key not in adata.var.columns:
                raise SignatureScoringError(f"Gene key '{gene_key}' not found in var")
            columns = pd.Index(adata.var[gene_key].astype(str))
        return pd.DataFrame(X, index=adata.obs_names, columns=columns)

    def score_signatures(
        self,
        adata: anndata.AnnData,
        signatures: Mapping[str, Sequence[str]],
        min_genes: int = 1,
        gene_key: Optional[str] = None,
    ) -> Tuple[pd.DataFrame, Dict[str, Any], AnalysisStep]:
        """
        Score every signature in every sample.

        Genes missing from the dataset are dropped with a warning. Duplicate
        gene identifiers are collapsed by mean before ranking. Missing
        expression values are left out of the ranking of that sample.

        Args:
            adata: Dataset (samples x genes)
            signatures: Signature name -> gene list
            min_genes: Minimum signature genes present in the dataset
            gene_key: var column holding gene identifiers (default: var_names)

        Returns:
            Tuple[pd.DataFrame, Dict[str, Any], AnalysisStep]:
                - Scores (samples x signatures)
                - Per-signature gene coverage statistics
                - IR for report export

        Raises:
            SignatureScoringError: If a signature has too few genes or covers every gene
        """
        try:
            logger.info(f"Scoring {len(signatures)} signatures")

            if not signatures:
                raise SignatureScoringError("No signatures supplied")
            if min_genes < 1:
                raise SignatureScoringError(f"min_genes must be >= 1, got {min_genes}")

            expr = self._expression_frame(adata, gene_key)
            if expr.columns.has_duplicates:
                n_dup = int(expr.columns.duplicated().sum())
                logger.warning(f"Collapsing {n_dup} duplicate gene identifiers by mean")
                expr = expr.T.groupby(level=0, sort=False).mean().T

            # Within-sample ranks, 1 = lowest expression
            ranks = expr.rank(axis=1, method="average", na_option="keep")
            n_ranked = ranks.notna().sum(axis=1).astype(float)

            scores = pd.DataFrame(index=expr.index)
            coverage: Dict[str, Dict[str, Any]] = {}
            for name, genes in signatures.items():
                requested = list(dict.fromkeys(str(g) for g in genes))
                present = [g for g in requested if g in expr.columns]
                missing = [g for g in requested if g not in expr.columns]

                if missing:
                    logger.warning(
                        f"Signature '{name}': {len(missing)}/{len(requested)} genes not found "
                        f"({missing[:5]}{'...' if len(missing) > 5 else ''})"
                    )
                if len(present) < min_genes:
                    raise SignatureScoringError(
                        f"Signature '{name}' has {len(present)} genes in the dataset, "
                        f"fewer than min_genes={min_genes}"
                    )
                if len(present) >= expr.shape[1]:
                    raise SignatureScoringError(
                        f"Signature '{name}' covers all {expr.shape[1]} genes; rank scores are undefined"
                    )

                sig_ranks = ranks[present]
                n_sig = sig_ranks.notna().sum(axis=1).astype(float)
                mean_rank = sig_ranks.mean(axis=1)

                # Attainable mean rank runs from (k+1)/2 to N-(k-1)/2
                lowest = (n_sig + 1) / 2
                span = n_ranked - n_sig
                score = (mean_rank - lowest) / span.where(span > 0)
                scores[name] = score.astype(float)

                coverage[name] = {
                    "n_requested": len(requested),
                    "n_present": len(present),
                    "missing_genes": missing,
                }

            stats_dict = {
                "n_signatures": len(coverage),
                "n_samples": int(scores.shape[0]),
                "signature_coverage": coverage,
                "analysis_type": "signature_scoring",
            }
            logger.info(f"Signature scoring complete: {list(scores.columns)}")

            ir = AnalysisStep(
                operation="signatures.score",
                tool_name="score_signatures",
                description="Rank-based per-sample gene signature scores",
                library="survstrat.services.analysis.signature_scoring_service",
                code_template="""# Rank-based signature scores
from survstrat.services.analysis.signature_scoring_service import SignatureScoringService

service = SignatureScoringService()
scores, stats, _ = service.score_signatures(
    adata,
    signatures={{ signatures | py }},
    min_genes={{ min_genes }},
    gene_key={{ gene_key | py }},
)""",
                imports=[
                    "from survstrat.services.analysis.signature_scoring_service import SignatureScoringService"
                ],
                parameters={
                    "signatures": {k: list(v) for k, v in signatures.items()},
                    "min_genes": min_genes,
                    "gene_key": gene_key,
                },
                parameter_schema={
                    "signatures": ParameterSpec(
                        param_type="Dict[str, List[str]]",
                        papermill_injectable=True,
                        default_value={},
                        required=True,
                        description="Signature name -> genes",
                    ),
                    "min_genes": ParameterSpec(
                        param_type="int",
                        papermill_injectable=True,
                        default_value=1,
                        required=False,
                        validation_rule="min_genes >= 1",
                        description="Minimum genes present per signature",
                    ),
                },
                input_entities=["adata"],
                output_entities=["scores"],
            )

            return scores, stats_dict, ir

        except SignatureScoringError:
            raise
        except Exception as e:
            logger.exception(f"Error in signature scoring: {e}")
            raise SignatureScoringError(f"Signature scoring failed: {str(e)}") from e

    def correlate_scores(
        self,
        scores: pd.DataFrame,
        method: str = "spearman",
        fdr_threshold: float = DEFAULT_FDR_THRESHOLD,
    ) -> Tuple[pd.DataFrame, Dict[str, Any], AnalysisStep]:
        """
        Pairwise correlation between score columns with BH-corrected p-values.

        Each pair uses its complete observations only.

        Args:
            scores: Samples x scores table
            method: "spearman" or "pearson"
            fdr_threshold: FDR cutoff for the ``significant`` flag

        Returns:
            Tuple[pd.DataFrame, Dict[str, Any], AnalysisStep]:
                - Symmetric correlation matrix (diagonal 1.0)
                - Statistics with a ``pairs`` list (coefficient, p_value, fdr, n)
                - IR for report export
        """
        try:
            if method not in VALID_CORRELATION_METHODS:
                raise SignatureScoringError(
                    f"Unknown correlation method '{method}'. Valid: {VALID_CORRELATION_METHODS}"
                )
            if scores.shape[1] < 2:
                raise SignatureScoringError("At least two score columns are needed for correlation")

            logger.info(f"Correlating {scores.shape[1]} scores ({method})")
            test = stats.spearmanr if method == "spearman" else stats.pearsonr

            columns = [str(c) for c in scores.columns]
            values = scores.apply(pd.to_numeric, errors="coerce")
            values.columns = columns
            matrix = pd.DataFrame(np.eye(len(columns)), index=columns, columns=columns)

            pairs: List[Dict[str, Any]] = []
            for a, b in combinations(columns, 2):
                complete = values[[a, b]].dropna()
                n = int(len(complete))
                if n < MIN_CORRELATION_SAMPLES or complete[a].nunique() < 2 or complete[b].nunique() < 2:
                    logger.debug(f"Skipping {a} vs {b}: not enough varying observations ({n})")
                    coefficient, p_value = np.nan, np.nan
                else:
                    res = test(complete[a].to_numpy(), complete[b].to_numpy())
                    coefficient, p_value = float(res.statistic), float(res.pvalue)
                matrix.loc[a, b] = matrix.loc[b, a] = coefficient
                pairs.append({"score_a": a, "score_b": b, "coefficient": coefficient, "p_value": p_value, "n": n})

            tested = [p for p in pairs if not np.isnan(p["p_value"])]
            for pair, fdr in zip(tested, benjamini_hochberg([p["p_value"] for p in tested])):
                pair["fdr"] = fdr
                pair["significant"] = fdr < fdr_threshold
            for pair in pairs:
                pair.setdefault("fdr", np.nan)
                pair.setdefault("significant", False)

            stats_dict = {
                "method": method,
                "n_scores": len(columns),
                "n_pairs": len(pairs),
                "n_significant_pairs": sum(1 for p in pairs if p["significant"]),
                "fdr_threshold": fdr_threshold,
                "pairs": pairs,
                "analysis_type": "score_correlation",
            }

            ir = AnalysisStep(
                operation="signatures.correlate",
                tool_name="correlate_scores",
                description="Pairwise correlation of signature scores with BH FDR",
                library="survstrat.services.analysis.signature_scoring_service",
                code_template="""# Score correlation
from survstrat.services.analysis.signature_scoring_service import SignatureScoringService

corr, corr_stats, _ = SignatureScoringService().correlate_scores(scores, method={{ method | py }})""",
                imports=[
                    "from survstrat.services.analysis.signature_scoring_service import SignatureScoringService"
                ],
                parameters={"method": method, "fdr_threshold": fdr_threshold},
                parameter_schema={},
                input_entities=["scores"],
                output_entities=["corr"],
            )

            return matrix, stats_dict, ir

        except SignatureScoringError:
            raise
        except Exception as e:
            logger.exception(f"Error in score correlation: {e}")
            raise SignatureScoringError(f"Score correlation failed: {str(e)}") from e
