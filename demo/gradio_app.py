"""VPC-Core Interactive Demo.

A Gradio backend monitor for the virtual PC: power button, program buttons,
format, clock speed selection, and live register / kernel log / console /
memory panels driven by a timer.

Usage:
    cd /path/to/vpc-core
    python demo/gradio_app.py

Features:
    - Power the machine on and watch it boot
    - Load ADDITION, SEARCH or SORT, or assemble your own program
    - Switch the clock between 1x, 2x and MAX
    - Memory map with the last accessed address highlighted
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import gradio as gr
from vpc_core import AssemblyError, ClockDriver, RunStatus
from vpc_core.clock import MachineSnapshot
from vpc_core.log import setup_logging
from vpc_core.programs import image_from_source


MEMORY_DISPLAY_WORDS = 512
MEMORY_ROW = 16

EXAMPLE_SOURCE = """    MOV R0, 15
    MOV R1, 25
    ADD R0, R1
    STORE R0, 100
    OUT R0
    HLT"""


# =============================================================================
# Rendering
# =============================================================================

def render_status(snap: MachineSnapshot) -> str:
    if snap.status is RunStatus.OFF:
        return "SYSTEM OFFLINE"
    lines = [
        f"STATUS:      {snap.status.value}",
        f"PROGRAM:     {snap.program_name or '-'}",
        f"CYCLE COUNT: {snap.cycles}",
        f"CPU TEMP:    {snap.temperature:.1f}C",
        f"CLOCK:       {snap.clock_period} ms",
    ]
    return "\n".join(lines)


def render_registers(snap: MachineSnapshot) -> str:
    if snap.status is RunStatus.OFF:
        return ""
    lines = ["REGISTERS (R0-R7)", "=" * 30]
    for i in range(0, len(snap.registers), 4):
        lines.append("  ".join(f"R{j}:{snap.registers[j]:>6}" for j in range(i, i + 4)))
    lines.append("")
    lines.append("INSTRUCTION REGISTER (IR)")
    lines.append("-" * 30)
    lines.append(f"  {snap.ir}")
    lines.append(
        f"  PC: {snap.pc}   FLAGS: [Z:{int(snap.flags.zero)} E:{int(snap.flags.equal)}]"
    )
    return "\n".join(lines)


def render_memory(snap: MachineSnapshot) -> str:
    if not snap.memory:
        return "MEMORY UNPOWERED"
    lines = [f"RAM (first {MEMORY_DISPLAY_WORDS} of {len(snap.memory)} words)"]
    for base in range(0, min(MEMORY_DISPLAY_WORDS, len(snap.memory)), MEMORY_ROW):
        cells = []
        for addr in range(base, base + MEMORY_ROW):
            value = snap.memory[addr]
            if addr == snap.last_accessed:
                cells.append(f"[{value:>3}]")
            elif value:
                cells.append(f" {value:>3} ")
            else:
                cells.append("   . ")
        lines.append(f"{base:04d} " + "".join(cells))
    return "\n".join(lines)


def render(machine: ClockDriver) -> tuple:
    snap = machine.snapshot()
    return (
        machine,
        render_status(snap),
        render_registers(snap),
        "\n".join(snap.kernel_log),
        "\n".join(f"> {line}" for line in snap.console[-200:]),
        render_memory(snap),
    )


# =============================================================================
# Event handlers
# =============================================================================

def toggle_power(machine):
    if machine is None:
        machine = ClockDriver()
    if machine.powered:
        machine.power_off()
    else:
        machine.power_on()
    return render(machine)


def on_tick(machine):
    if machine is not None:
        machine.tick()
        return render(machine)
    return render(ClockDriver())


def run_bundled(machine, name):
    if machine is None or not machine.powered:
        raise gr.Error("Power the machine on first")
    try:
        machine.load(name)
    except RuntimeError as e:
        raise gr.Error(str(e))
    return render(machine)


def run_source(machine, source):
    if machine is None or not machine.powered:
        raise gr.Error("Power the machine on first")
    try:
        machine.load_image(image_from_source(source))
    except (AssemblyError, RuntimeError) as e:
        raise gr.Error(str(e))
    return render(machine)


def format_disk(machine):
    if machine is None or not machine.powered:
        raise gr.Error("Power the machine on first")
    try:
        machine.format()
    except RuntimeError as e:
        raise gr.Error(str(e))
    return render(machine)


def set_speed(machine, label):
    if machine is None or not machine.powered:
        raise gr.Error("Power the machine on first")
    period = machine.set_clock(label)
    return render(machine) + (gr.Timer(value=period / 1000.0),)


# =============================================================================
# Gradio Interface
# =============================================================================

def create_demo():
    """Create and return the Gradio demo interface."""

    with gr.Blocks(title="VPC-Core Monitor", theme=gr.themes.Soft()) as demo:
        gr.Markdown("""
        # VPC-Core: Virtual PC Backend Monitor

        An eight-register machine with 1024 words of memory, stepped once per
        clock tick. **Cycle**: `fetch -> IR -> registry -> handler -> apply`
        """)

        machine_state = gr.State(None)
        timer = gr.Timer(value=0.5)

        with gr.Row():
            with gr.Column(scale=2):
                power_button = gr.Button("Power", variant="primary")

                gr.Markdown("### Programs")
                with gr.Row():
                    add_button = gr.Button("ADDITION.EXE")
                    search_button = gr.Button("SEARCH.EXE")
                    sort_button = gr.Button("SORT.EXE")

                source_input = gr.Textbox(
                    value=EXAMPLE_SOURCE,
                    label="Assembly Source",
                    lines=10,
                    placeholder="Enter assembly code here..."
                )
                with gr.Row():
                    assemble_button = gr.Button("Assemble & Run")
                    format_button = gr.Button("Format Disk", variant="stop")

                speed_radio = gr.Radio(
                    choices=["1x", "2x", "MAX"],
                    value="2x",
                    label="Clock"
                )

                console_output = gr.Textbox(label="Console", lines=10, interactive=False)

            with gr.Column(scale=3):
                with gr.Row():
                    status_output = gr.Textbox(label="Backend", lines=6, interactive=False)
                    registers_output = gr.Textbox(label="CPU", lines=6, interactive=False)

                kernel_output = gr.Textbox(
                    label="Kernel Instruction Logs",
                    lines=12,
                    interactive=False
                )
                memory_output = gr.Textbox(label="Memory Map", lines=16, interactive=False)

        with gr.Accordion("ISA Reference", open=False):
            gr.Markdown("""
            | Instruction | Description | Example |
            |-------------|-------------|---------|
            | `MOV Rd, imm` | Load immediate value | `MOV R0, 42` |
            | `LOAD Rd, Rs/addr` | Read memory (address in register or literal) | `LOAD R2, R1` |
            | `STORE Rs, addr` | Write memory | `STORE R0, 100` |
            | `ADD/SUB/AND/OR Rd, Rs` | Register arithmetic | `ADD R1, R3` |
            | `CMP Rs, Rt/imm` | Set equal flag | `CMP R1, 205` |
            | `JEQ addr/label` | Jump if equal | `JEQ found` |
            | `JMP addr/label` | Unconditional jump | `JMP loop` |
            | `OUT Rs` | Print register | `OUT R0` |
            | `HLT` | Stop execution | `HLT` |

            **Registers**: R0-R7. A bare number below 8 in a LOAD source or
            CMP second operand names a register.
            """)

        outputs = [
            machine_state, status_output, registers_output,
            kernel_output, console_output, memory_output,
        ]

        power_button.click(fn=toggle_power, inputs=[machine_state], outputs=outputs)
        timer.tick(fn=on_tick, inputs=[machine_state], outputs=outputs)
        add_button.click(
            fn=lambda m: run_bundled(m, "add"), inputs=[machine_state], outputs=outputs
        )
        search_button.click(
            fn=lambda m: run_bundled(m, "search"), inputs=[machine_state], outputs=outputs
        )
        sort_button.click(
            fn=lambda m: run_bundled(m, "sort"), inputs=[machine_state], outputs=outputs
        )
        assemble_button.click(
            fn=run_source, inputs=[machine_state, source_input], outputs=outputs
        )
        format_button.click(fn=format_disk, inputs=[machine_state], outputs=outputs)
        speed_radio.change(
            fn=set_speed, inputs=[machine_state, speed_radio], outputs=outputs + [timer]
        )

    return demo


# =============================================================================
# Main
# =============================================================================

if __name__ == "__main__":
    setup_logging()
    demo = create_demo()
    demo.launch(
        share=False,
        server_name="0.0.0.0",
        server_port=7861,
        show_error=True
    )
