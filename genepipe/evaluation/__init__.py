"""
Evaluation of prediction sets against a reference annotation
"""
from .accuracy import compare_gene_sets, evaluate_against_reference, write_accuracy_table

__all__ = ['compare_gene_sets', 'evaluate_against_reference', 'write_accuracy_table']
