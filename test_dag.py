import io
import unittest

import pandas as pd

import utils
from dag_engine import (
    TaskGraph,
    build_task_graph,
    is_task_descendant,
    parse_predecessors,
    validate_task_graph,
)


def ids(rows):
    return [utils.normalize_task_id(r["id"]) for r in rows]


class TestParsePredecessors(unittest.TestCase):

    def test_string_forms(self):
        self.assertEqual(parse_predecessors("A;B"), ["A", "B"])
        self.assertEqual(parse_predecessors("A, B; A"), ["A", "B"])
        self.assertEqual(parse_predecessors(""), [])

    def test_list_and_null(self):
        self.assertEqual(parse_predecessors(["A", 2]), ["A", "2"])
        self.assertEqual(parse_predecessors(None), [])
        self.assertEqual(parse_predecessors(float("nan")), [])

    def test_float_ids_lose_decimal(self):
        self.assertEqual(parse_predecessors(2.0), ["2"])
        self.assertEqual(parse_predecessors([1.0, 2]), ["1", "2"])


class TestTaskGraph(unittest.TestCase):

    def setUp(self):
        # G
        # |- A
        # |- B (group)
        #    |- C
        # D follows A, E follows D; F stands alone
        self.df = utils.tasks_to_frame([
            {"id": "G", "type": "group", "plan_start_date": "2024-01-01", "plan_end_date": "2024-01-20"},
            {"id": "A", "parent_task_id": "G", "plan_start_date": "2024-01-01", "plan_end_date": "2024-01-05"},
            {"id": "B", "parent_task_id": "G", "type": "group", "plan_start_date": "2024-01-06", "plan_end_date": "2024-01-10"},
            {"id": "C", "parent_task_id": "B", "plan_start_date": "2024-01-06", "plan_end_date": "2024-01-10"},
            {"id": "D", "predecessors": ["A"], "plan_start_date": "2024-01-06", "plan_end_date": "2024-01-08"},
            {"id": "E", "predecessors": "D", "plan_start_date": "2024-01-09", "plan_end_date": "2024-01-12"},
            {"id": "F", "plan_start_date": "2024-01-01", "plan_end_date": "2024-01-02"},
        ])
        self.graph = TaskGraph(self.df)

    def test_deep_descendants_are_leaves(self):
        self.assertEqual(ids(self.graph.descendants_of("G")), ["A", "C"])

    def test_shallow_descendants_are_children(self):
        self.assertEqual(ids(self.graph.descendants_of("G", deep=False)), ["A", "B"])

    def test_descendant_ids_include_groups(self):
        self.assertEqual(self.graph.descendant_ids("G"), ["A", "B", "C"])
        self.assertEqual(self.graph.descendant_ids("F"), [])

    def test_successors(self):
        self.assertEqual(ids(self.graph.successors_of("A")), ["D"])
        self.assertEqual(ids(self.graph.successors_of("D")), ["E"])
        self.assertEqual(self.graph.successors_of("E"), [])
        self.assertEqual(self.graph.successors_of("missing"), [])

    def test_is_descendant(self):
        self.assertTrue(self.graph.is_descendant("C", "G"))
        self.assertTrue(self.graph.is_descendant("A", "G"))
        self.assertFalse(self.graph.is_descendant("G", "C"))
        self.assertFalse(self.graph.is_descendant("F", "G"))
        self.assertTrue(is_task_descendant("C", "B", self.df))

    def test_leaf_tasks(self):
        self.assertEqual(ids(self.graph.leaf_tasks()), ["A", "C", "D", "E", "F"])


class TestMalformedGraphs(unittest.TestCase):

    def test_parent_cycle_terminates(self):
        df = utils.tasks_to_frame([
            {"id": "X", "parent_task_id": "Y", "type": "group", "plan_start_date": "2024-01-01", "plan_end_date": "2024-01-02"},
            {"id": "Y", "parent_task_id": "X", "type": "group", "plan_start_date": "2024-01-01", "plan_end_date": "2024-01-02"},
        ])
        graph = TaskGraph(df)
        self.assertFalse(graph.is_descendant("X", "Z"))
        self.assertEqual(graph.descendant_ids("X"), ["Y"])
        self.assertEqual(graph.descendants_of("X"), [])

    def test_validation_report(self):
        df = utils.tasks_to_frame([
            {"id": "1", "plan_start_date": "2024-01-01", "plan_end_date": "2024-01-02"},
            {"id": "2", "predecessors": "2", "plan_start_date": "2024-01-01", "plan_end_date": "2024-01-02"},
            {"id": "3", "predecessors": "99", "plan_start_date": "2024-01-01", "plan_end_date": "2024-01-02"},
            {"id": "4", "predecessors": "5", "plan_start_date": "2024-01-01", "plan_end_date": "2024-01-02"},
            {"id": "5", "predecessors": "4", "plan_start_date": "2024-01-01", "plan_end_date": "2024-01-02"},
            {"id": "6", "parent_task_id": "404", "plan_start_date": "2024-01-01", "plan_end_date": "2024-01-02"},
        ])
        val = validate_task_graph(df)

        self.assertEqual(val["1"], "OK")
        self.assertIn("ERROR: Self-dependency", val["2"])
        self.assertIn("ERROR: Missing predecessor ID 99", val["3"])
        self.assertIn("ERROR: Dependency cycle detected", val["4"])
        self.assertIn("ERROR: Dependency cycle detected", val["5"])
        self.assertIn("ERROR: Missing parent ID 404", val["6"])

    def test_self_dependency_is_not_an_edge(self):
        df = utils.tasks_to_frame([
            {"id": "1", "predecessors": "1", "plan_start_date": "2024-01-01", "plan_end_date": "2024-01-02"},
        ])
        self.assertEqual(TaskGraph(df).successors_of("1"), [])


class TestCsvFrame(unittest.TestCase):

    def setUp(self):
        # Blank cells upcast the numeric parent and predecessor columns to float
        csv = io.StringIO(
            "id,parent_task_id,type,plan_start_date,plan_end_date,predecessors,cost\n"
            "1,,group,2024-01-01,2024-01-10,,1000\n"
            "2,1,task,2024-01-01,2024-01-05,,100\n"
            "3,1,task,2024-01-06,2024-01-10,2,100\n"
        )
        self.df = pd.read_csv(csv)
        self.graph = build_task_graph(self.df)

    def test_hierarchy_survives(self):
        self.assertEqual(self.graph.children_of("1"), ["2", "3"])
        self.assertEqual(self.graph.parent_of, {"2": "1", "3": "1"})
        self.assertFalse(self.graph.is_leaf("1"))
        self.assertEqual(ids(self.graph.descendants_of(1)), ["2", "3"])

    def test_dependencies_survive(self):
        self.assertEqual(ids(self.graph.successors_of("2")), ["3"])
        self.assertTrue(all(v == "OK" for v in validate_task_graph(self.df).values()))


if __name__ == '__main__':
    unittest.main()
