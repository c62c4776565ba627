"""id3kit: ID3 decision-tree induction over in-memory records and relational stores."""

from loguru import logger

from id3kit.builder import build
from id3kit.entropy import EvaluationSheet
from id3kit.evaluation import EvaluationReport, extract_rules, predict, score
from id3kit.logging import PACKAGE_NAME, enable_logging
from id3kit.memory import build_from_records, evaluate
from id3kit.relational import RelationalBuilder, build_from_relation
from id3kit.store import MySQLConnection, SerializedConnection, SQLiteConnection
from id3kit.tree import DecisionTree, Leaf, search

logger.disable(PACKAGE_NAME)  # noqa: RUF067 - Disable logging for the id3kit package by default

__all__ = [
    "DecisionTree",
    "EvaluationReport",
    "EvaluationSheet",
    "Leaf",
    "MySQLConnection",
    "RelationalBuilder",
    "SQLiteConnection",
    "SerializedConnection",
    "build",
    "build_from_records",
    "build_from_relation",
    "enable_logging",
    "evaluate",
    "extract_rules",
    "predict",
    "score",
    "search",
]
