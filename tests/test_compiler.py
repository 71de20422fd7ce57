import re
import unittest

from tinybfc import (
    BracketStack,
    BrainfuckCompiler,
    CompileError,
    LabelAllocator,
    LoopFrame,
    UnmatchedClosingBracket,
    UnmatchedOpeningBracket,
    translate,
)

PROLOGUE = [
    "\t.section .bss",
    "\t.lcomm buffer 1000",
    "",
    "\t.section .text",
    "\t.globl _start",
    "_start:",
    "\tmovl $buffer, %edi",
    "",
]

EPILOGUE = [
    "\tmovl $1, %eax",
    "\tmovl $0, %ebx",
    "\tint $0x80",
    "",
]

LABEL_RE = re.compile(r"^\.L([BE])(\d+):$")


def loop_labels(program):
    return [(m.group(1), int(m.group(2))) for m in map(LABEL_RE.match, program.lines) if m]


class LabelAllocatorTests(unittest.TestCase):
    def test_ids_start_at_one_and_increase(self) -> None:
        labels = LabelAllocator()
        self.assertEqual([labels.allocate() for _ in range(4)], [1, 2, 3, 4])
        self.assertEqual(labels.last, 4)

    def test_allocators_are_independent(self) -> None:
        first = LabelAllocator()
        second = LabelAllocator()
        first.allocate()
        first.allocate()
        self.assertEqual(second.allocate(), 1)


class BracketStackTests(unittest.TestCase):
    def test_pop_returns_frames_in_lifo_order(self) -> None:
        stack = BracketStack(4)
        stack.push(LoopFrame(id=1, position=0))
        stack.push(LoopFrame(id=2, position=3))
        self.assertEqual(stack.pop(), LoopFrame(id=2, position=3))
        self.assertEqual(stack.pop(), LoopFrame(id=1, position=0))
        self.assertIsNone(stack.pop())
        self.assertFalse(stack)

    def test_grows_past_capacity_hint(self) -> None:
        stack = BracketStack(2)
        for index in range(9):
            stack.push(LoopFrame(id=index + 1, position=index))
        self.assertEqual(len(stack), 9)
        self.assertGreaterEqual(stack.capacity, 9)
        self.assertEqual([frame.id for frame in stack.frames()], list(range(1, 10)))

    def test_non_positive_capacity_is_clamped(self) -> None:
        stack = BracketStack(0)
        self.assertEqual(stack.capacity, 1)
        stack.push(LoopFrame(id=1, position=0))
        stack.push(LoopFrame(id=2, position=1))
        self.assertEqual(len(stack), 2)


class TranslationTests(unittest.TestCase):
    def test_empty_source_has_only_prologue_and_epilogue(self) -> None:
        program = translate("")
        self.assertEqual(list(program.lines), PROLOGUE + EPILOGUE)
        self.assertEqual(program.loop_labels(), [])

    def test_symbol_templates(self) -> None:
        program = translate("><+-")
        body = list(program.lines[len(PROLOGUE) : -len(EPILOGUE)])
        self.assertEqual(
            body,
            ["\tinc %edi", "", "\tdec %edi", "", "\tincb (%edi)", "", "\tdecb (%edi)", ""],
        )

    def test_output_and_input_emit_single_byte_syscalls(self) -> None:
        body = list(translate(".,").lines[len(PROLOGUE) : -len(EPILOGUE)])
        self.assertEqual(
            body,
            [
                "\tmovl $4, %eax",
                "\tmovl $1, %ebx",
                "\tmovl %edi, %ecx",
                "\tmovl $1, %edx",
                "\tint $0x80",
                "",
                "\tmovl $3, %eax",
                "\tmovl $0, %ebx",
                "\tmovl %edi, %ecx",
                "\tmovl $1, %edx",
                "\tint $0x80",
                "",
            ],
        )

    def test_loop_emits_guard_labels_and_back_branch(self) -> None:
        body = list(translate("[-]").lines[len(PROLOGUE) : -len(EPILOGUE)])
        self.assertEqual(
            body,
            [
                "\tcmpb $0, (%edi)",
                "\tjz .LE1",
                ".LB1:",
                "\tdecb (%edi)",
                "",
                "\tcmpb $0, (%edi)",
                "\tjnz .LB1",
                ".LE1:",
            ],
        )

    def test_comments_are_ignored(self) -> None:
        self.assertEqual(translate("hello world\n+ # note").lines, translate("+").lines)

    def test_bytes_source_matches_text_source(self) -> None:
        self.assertEqual(translate(b"+\xff[-]\x00.").lines, translate("+[-].").lines)

    def test_array_size_sets_reserved_buffer(self) -> None:
        program = translate("+", array_size=30000)
        self.assertIn("\t.lcomm buffer 30000", program.lines)

    def test_cursor_motion_past_buffer_is_accepted(self) -> None:
        program = translate(">" * 20 + "<" * 40, array_size=4)
        self.assertEqual(program.lines.count("\tinc %edi"), 20)
        self.assertEqual(program.lines.count("\tdec %edi"), 40)

    def test_instruction_lines_are_indented_once(self) -> None:
        program = translate("+[>,.<-]")
        for line in program.lines:
            if not line or line.endswith(":"):
                continue
            self.assertTrue(line.startswith("\t"), line)
            self.assertFalse(line.startswith("\t\t"), line)

    def test_text_joins_lines_with_trailing_newline(self) -> None:
        program = translate("+")
        self.assertEqual(program.text(), "\n".join(program.lines) + "\n")
        self.assertEqual(str(program), program.text())

    def test_invalid_array_size(self) -> None:
        with self.assertRaises(ValueError):
            BrainfuckCompiler(array_size=0)


class LoopStructureTests(unittest.TestCase):
    def test_nested_loop_closes_inner_before_outer(self) -> None:
        labels = loop_labels(translate("[[]]"))
        self.assertEqual(labels, [("B", 1), ("B", 2), ("E", 2), ("E", 1)])

    def test_start_and_end_labels_pair_up(self) -> None:
        source = "+[>[-]<[>+<-]]>[[[.]]],[-]"
        labels = loop_labels(translate(source))
        starts = [label_id for kind, label_id in labels if kind == "B"]
        ends = [label_id for kind, label_id in labels if kind == "E"]
        self.assertEqual(sorted(starts), sorted(ends))
        self.assertEqual(len(set(starts)), source.count("["))
        self.assertEqual(starts, sorted(starts))

    def test_every_branch_targets_an_emitted_label(self) -> None:
        program = translate("[[][[]]]")
        defined = set(program.labels())
        for line in program.lines:
            if line.startswith(("\tjz ", "\tjnz ")):
                self.assertIn(line.split()[1], defined)

    def test_deep_nesting_beyond_stack_hint(self) -> None:
        depth = 500
        program = translate("[" * depth + "]" * depth, stack_capacity_hint=1)
        self.assertEqual(len(program.loop_labels()), depth * 2)
        self.assertEqual(program.loop_labels()[-1], ".LE1")

    def test_translation_is_deterministic(self) -> None:
        source = "++[>+++[>++<-]<-]>>."
        first = translate(source, 64, 8)
        second = translate(source, 64, 8)
        self.assertEqual(first.text(), second.text())

    def test_compiler_instance_does_not_share_label_state(self) -> None:
        compiler = BrainfuckCompiler()
        compiler.compile("[][]")
        self.assertEqual(compiler.compile("[]").loop_labels(), [".LB1", ".LE1"])


class CompileErrorTests(unittest.TestCase):
    def test_lone_closing_bracket(self) -> None:
        with self.assertRaises(UnmatchedClosingBracket) as ctx:
            translate("]")
        self.assertEqual(ctx.exception.position, 0)

    def test_closing_bracket_position_is_reported(self) -> None:
        with self.assertRaises(UnmatchedClosingBracket) as ctx:
            translate("+[-]]")
        self.assertEqual(ctx.exception.position, 4)
        self.assertIn("position 4", str(ctx.exception))

    def test_lone_opening_bracket(self) -> None:
        with self.assertRaises(UnmatchedOpeningBracket) as ctx:
            translate("[")
        self.assertEqual(ctx.exception.count, 1)
        self.assertEqual(ctx.exception.positions, (0,))
        self.assertEqual(str(ctx.exception), "1 unmatched opening bracket at position 0")

    def test_unresolved_count_is_reported(self) -> None:
        with self.assertRaises(UnmatchedOpeningBracket) as ctx:
            translate("[ [ [] ")
        self.assertEqual(ctx.exception.count, 2)
        self.assertEqual(ctx.exception.positions, (0, 2))
        self.assertEqual(str(ctx.exception), "2 unmatched opening brackets at positions 0, 2")

    def test_errors_share_base_class(self) -> None:
        for source in ("]", "["):
            with self.assertRaises(CompileError):
                translate(source)


if __name__ == "__main__":
    unittest.main()
