"""RVEMU Interactive Demo.

A Gradio web interface for assembling, running and inspecting RV32I programs.

Usage:
    cd /path/to/rvemu
    python demo/gradio_app.py

Features:
    - Write or load RV32I assembly programs
    - See UART output produced by byte stores to 0x10000000
    - Step-by-step execution trace with register changes
    - Final register dump
"""

import io
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import gradio as gr
from rvemu import RV32ICPU, AsmError, EmulatorError, disassemble


# =============================================================================
# Example Programs
# =============================================================================

EXAMPLE_PROGRAMS = {
    "Add 5 + 10": """    addi x1, x0, 5      # x1 = 5
    addi x2, x0, 10     # x2 = 10
    add  x3, x1, x2     # x3 = 15
loop:
    beq  x0, x0, loop   # park here""",

    "Sum 1-10": """    li   a0, 0          # sum
    li   t0, 1          # counter
    li   t1, 11         # limit
loop:
    add  a0, a0, t0
    addi t0, t0, 1
    bne  t0, t1, loop
done:
    j    done           # a0 = 55""",

    "Hello UART": """    lui  t0, 0x10000    # UART at 0x10000000
    li   t1, 72         # 'H'
    sb   t1, 0(t0)
    li   t1, 105        # 'i'
    sb   t1, 0(t0)
    li   t1, 10         # newline
    sb   t1, 0(t0)
done:
    j    done""",

    "Call / Return": """    li   a0, 6
    jal  ra, double     # a0 = 12
    jal  ra, double     # a0 = 24
done:
    j    done
double:
    add  a0, a0, a0
    ret""",

    "Custom": ""
}


# =============================================================================
# Execution Functions
# =============================================================================

def run_program(program: str, max_cycles: int) -> tuple:
    """Assemble and execute a program.

    Args:
        program: RV32I assembly source
        max_cycles: Number of cycles to run

    Returns:
        Tuple of (summary_text, uart_text, trace_text, registers_text)
    """
    if not program.strip():
        return "Error: No program provided", "", "", ""

    uart = io.BytesIO()
    cpu = RV32ICPU(output=uart, record_trace=True)

    try:
        cpu.load_program(program)
    except AsmError as e:
        return f"Assembly error: {e}", "", "", ""

    try:
        trace = cpu.run(int(max_cycles))
        error_msg = None
    except EmulatorError as e:
        trace = cpu.trace
        error_msg = str(e)

    # Format summary
    summary = cpu.get_summary()
    summary_lines = [
        "EXECUTION SUMMARY",
        "=" * 40,
        f"Cycles: {summary['cycles']}",
        f"PC: 0x{summary['pc']:08x}",
        f"Invalid instructions: {len(summary['errors'])}",
    ]
    if error_msg:
        summary_lines.append(f"\nRuntime: {error_msg}")
    for err in summary['errors'][:5]:
        summary_lines.append(f"  - {err}")
    summary_text = "\n".join(summary_lines)

    # Format trace
    trace_lines = [
        "EXECUTION TRACE",
        "=" * 60,
    ]
    for entry in trace[:100]:  # Limit to 100 entries
        trace_lines.append(f"\n--- Cycle {entry.cycle} (PC=0x{entry.pc:08x}) ---")
        trace_lines.append(f"Word:        0x{entry.word:08x}")
        trace_lines.append(f"Decoded:     {disassemble(entry.decode_result)}")

        pre_regs = entry.pre_state["registers"]
        post_regs = entry.post_state["registers"]
        changes = [
            f"x{i}: {pre_regs[i]} -> {post_regs[i]}"
            for i in range(len(pre_regs)) if pre_regs[i] != post_regs[i]
        ]
        if changes:
            trace_lines.append(f"Changes:     {', '.join(changes)}")

    if len(trace) > 100:
        trace_lines.append(f"\n... ({len(trace) - 100} more entries)")

    trace_text = "\n".join(trace_lines)

    registers_text = cpu.format_register_dump().strip()

    return summary_text, uart.getvalue().decode("utf-8", errors="replace"), trace_text, registers_text


def load_example(example_name: str) -> str:
    """Load an example program."""
    return EXAMPLE_PROGRAMS.get(example_name, "")


# =============================================================================
# Gradio Interface
# =============================================================================

def create_demo():
    """Create and return the Gradio demo interface."""

    with gr.Blocks(title="RVEMU Demo", theme=gr.themes.Soft()) as demo:
        gr.Markdown("""
        # RVEMU: RV32I Interpreter

        Assemble a program, load it at address 0 and run it for a fixed
        number of cycles.

        **Pipeline**: `fetch -> decode -> registry -> execute -> pc update`
        """)

        with gr.Row():
            with gr.Column(scale=2):
                gr.Markdown("### Assembly Program")

                example_dropdown = gr.Dropdown(
                    choices=list(EXAMPLE_PROGRAMS.keys()),
                    value="Add 5 + 10",
                    label="Load Example"
                )

                program_input = gr.Textbox(
                    value=EXAMPLE_PROGRAMS["Add 5 + 10"],
                    label="Source Code",
                    lines=15,
                    placeholder="Enter RV32I assembly here..."
                )

                gr.Markdown("### Settings")

                max_cycles = gr.Slider(
                    minimum=1,
                    maximum=10000,
                    value=100,
                    step=1,
                    label="Cycles"
                )

                run_button = gr.Button("Run Program", variant="primary")

            with gr.Column(scale=3):
                with gr.Row():
                    summary_output = gr.Textbox(
                        label="Summary",
                        lines=8,
                        interactive=False
                    )
                    uart_output = gr.Textbox(
                        label="UART Output",
                        lines=8,
                        interactive=False
                    )

                registers_output = gr.Textbox(
                    label="Final Registers",
                    lines=10,
                    interactive=False
                )

                trace_output = gr.Textbox(
                    label="Execution Trace",
                    lines=20,
                    interactive=False
                )

        with gr.Accordion("ISA Reference", open=False):
            gr.Markdown("""
            | Family | Instructions |
            |--------|--------------|
            | Register ALU | `add sub sll slt sltu xor srl sra or and` |
            | Immediate ALU | `addi slti sltiu xori ori andi slli srli srai` |
            | Loads | `lb lh lw lbu lhu` as `lw rd, off(rs1)` |
            | Stores | `sb sh sw` as `sw rs2, off(rs1)` |
            | Branches | `beq bne blt bge bltu bgeu` to a label |
            | Jumps | `jal rd, label`, `jalr rd, off(rs1)` |
            | Upper | `lui rd, imm20`, `auipc rd, imm20` |
            | System | `ecall ebreak` (no effect) |
            | Pseudo | `nop li mv j ret` |

            **Registers**: x0-x31 or ABI names (zero, ra, sp, t0, a0, ...); x0 is always 0
            **UART**: `sb` to address 0x10000000 prints one character
            """)

        example_dropdown.change(
            fn=load_example,
            inputs=[example_dropdown],
            outputs=[program_input]
        )

        run_button.click(
            fn=run_program,
            inputs=[program_input, max_cycles],
            outputs=[summary_output, uart_output, trace_output, registers_output]
        )

    return demo


# =============================================================================
# Main
# =============================================================================

if __name__ == "__main__":
    demo = create_demo()
    demo.launch(
        share=False,
        server_name="0.0.0.0",
        server_port=7861,
        show_error=True
    )
